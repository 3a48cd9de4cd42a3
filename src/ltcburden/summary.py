"""
Burden summary domain model.

One BurdenSummary per patient: cumulative incident condition counts per
follow-up horizon, incident onsets with time since index, and the conditions
already present at index.
"""

import typing
from dataclasses import dataclass
from datetime import date

import pandas as pd


@dataclass(frozen=True, order=True)
class Horizon:
    """A follow-up duration in whole years, counted from the index date."""

    years: int

    def __post_init__(self):
        if isinstance(self.years, bool) or not isinstance(self.years, int) or self.years < 1:
            raise ValueError(f"Horizon must be a whole number of years >= 1, got {self.years!r}")

    @property
    def label(self) -> str:
        return f"{self.years}y"


@dataclass(frozen=True)
class IncidentOnset:
    condition_name: str
    onset_date: date
    years_since_index: float


@dataclass(frozen=True)
class PreExistingCondition:
    condition_name: str
    onset_date: date
    years_before_index: float


@dataclass(frozen=True)
class BurdenSummary:
    """
    Attributes:
        patient_id: Unique patient identifier.
        index_date: Start of follow-up.
        censor_date: End of observation.
        follow_up_years: (censor_date - index_date) in days / 365.25.
        cumulative_condition_count: horizon label → incident conditions with
            onset inside the horizon, or None when the patient was censored
            before the horizon ended.
        incident: Onsets in [index_date, censor_date], ordered by onset date.
        pre_existing: Conditions with onset before index_date.
    """

    patient_id: str
    index_date: date
    censor_date: date
    follow_up_years: float
    cumulative_condition_count: dict[str, int | None]
    incident: tuple[IncidentOnset, ...] = ()
    pre_existing: tuple[PreExistingCondition, ...] = ()

    @property
    def has_conditions(self) -> bool:
        return bool(self.incident or self.pre_existing)

    def cumulative_curve(self) -> list[tuple[float, int]]:
        """
        Step function of incident burden: (years_since_index, cumulative count)
        starting at (0.0, 0), one step per distinct onset time.
        """
        curve = [(0.0, 0)]
        count = 0
        for onset in self.incident:
            count += 1
            if curve[-1][0] == onset.years_since_index:
                curve[-1] = (onset.years_since_index, count)
            else:
                curve.append((onset.years_since_index, count))
        return curve

    def to_dict(self) -> dict[str, typing.Any]:
        """JSON-serializable form, dates as ISO strings."""
        return {
            "patient_id": self.patient_id,
            "index_date": self.index_date.isoformat(),
            "censor_date": self.censor_date.isoformat(),
            "follow_up_years": round(self.follow_up_years, 4),
            "cumulative_condition_count": dict(self.cumulative_condition_count),
            "incident": [
                {
                    "condition_name": onset.condition_name,
                    "onset_date": onset.onset_date.isoformat(),
                    "years_since_index": round(onset.years_since_index, 4),
                }
                for onset in self.incident
            ],
            "pre_existing": [
                {
                    "condition_name": condition.condition_name,
                    "onset_date": condition.onset_date.isoformat(),
                    "years_before_index": round(condition.years_before_index, 4),
                }
                for condition in self.pre_existing
            ],
        }


def summaries_to_frame(summaries: typing.Iterable[BurdenSummary]) -> pd.DataFrame:
    """
    One row per patient for tabulation: dates, follow-up, pre-existing count
    and one nullable integer column per horizon.
    """
    rows = []
    for summary in summaries:
        row = {
            "patient_id": summary.patient_id,
            "index_date": summary.index_date.isoformat(),
            "censor_date": summary.censor_date.isoformat(),
            "follow_up_years": round(summary.follow_up_years, 4),
            "pre_existing_count": len(summary.pre_existing),
            "incident_count": len(summary.incident),
        }
        row.update(summary.cumulative_condition_count)
        rows.append(row)
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    base_columns = {"patient_id", "index_date", "censor_date", "follow_up_years",
                    "pre_existing_count", "incident_count"}
    for column in df.columns:
        if column not in base_columns:
            df[column] = df[column].astype("Int64")
    return df.sort_values("patient_id").reset_index(drop=True)
