"""
Cohort prevalence of each condition at index and at each follow-up horizon.

Prevalence counts a condition as present at a time point when its onset is on
or before that point, pre-existing conditions included. The denominator at a
horizon holds only the patients observed through the end of that horizon.
"""

import typing

import pandas as pd

from .dates import add_years
from .summary import BurdenSummary, Horizon

INDEX_TIMEPOINT = "index"

PREVALENCE_COLUMNS = [
    "condition_name",
    "timepoint",
    "patients_with_condition",
    "patients_observed",
    "prevalence_pct",
]


def prevalence_table(
    summaries: typing.Sequence[BurdenSummary],
    horizons: typing.Sequence[Horizon],
    condition_names: typing.Iterable[str] | None = None,
) -> pd.DataFrame:
    """
    Long-format table, one row per (condition, timepoint). Timepoints are
    'index' followed by the horizon labels in ascending order.
    `condition_names` defaults to every condition seen in `summaries`.
    """
    if condition_names is None:
        condition_names = sorted(
            {onset.condition_name for s in summaries for onset in s.incident}
            | {condition.condition_name for s in summaries for condition in s.pre_existing}
        )
    else:
        condition_names = list(condition_names)

    timepoints: list[tuple[str, Horizon | None]] = [(INDEX_TIMEPOINT, None)]
    timepoints.extend((horizon.label, horizon) for horizon in sorted(horizons))

    rows = []
    for label, horizon in timepoints:
        observed = [s for s in summaries if _is_observed(s, horizon)]
        present: dict[str, int] = {name: 0 for name in condition_names}
        for summary in observed:
            cutoff = summary.index_date if horizon is None else add_years(summary.index_date, horizon.years)
            for name in _conditions_present(summary, cutoff):
                if name in present:
                    present[name] += 1
        for name in condition_names:
            rows.append(
                {
                    "condition_name": name,
                    "timepoint": label,
                    "patients_with_condition": present[name],
                    "patients_observed": len(observed),
                    "prevalence_pct": round(100.0 * present[name] / len(observed), 1) if observed else None,
                }
            )
    return pd.DataFrame(rows, columns=PREVALENCE_COLUMNS)


def _is_observed(summary: BurdenSummary, horizon: Horizon | None) -> bool:
    if horizon is None:
        return True
    return summary.censor_date >= add_years(summary.index_date, horizon.years)


def _conditions_present(summary: BurdenSummary, cutoff) -> set[str]:
    present = {condition.condition_name for condition in summary.pre_existing}
    present.update(onset.condition_name for onset in summary.incident if onset.onset_date <= cutoff)
    return present
