"""
Burden aggregator.

Computes a patient's BurdenSummary from their canonical episodes over a set of
follow-up horizons, with censoring taken into account:

- a horizon of h years ends h calendar years after the index date
- if the patient was censored before a horizon ended, the count for that
  horizon is None (excluded from the denominator), never 0
- otherwise the count is the number of episodes with onset in
  [index_date, horizon end]
- onsets before index_date are pre-existing and never count as incident
- onsets after censor_date are outside observation and are ignored
- years_since_index is the day difference divided by 365.25
"""

import typing

from .dates import add_years, years_between
from .episode import CanonicalEpisode
from .errors import ConfigError, InvariantError
from .summary import BurdenSummary, Horizon, IncidentOnset, PreExistingCondition
from .timeline import PatientTimeline

DEFAULT_HORIZONS = (1, 5, 10)


def parse_horizons(values: typing.Iterable[typing.Any]) -> tuple[Horizon, ...]:
    """
    Validate horizon configuration: whole years >= 1, returned de-duplicated
    and ascending. Raises ConfigError otherwise.
    """
    horizons: set[Horizon] = set()
    for value in values:
        try:
            if isinstance(value, Horizon):
                horizons.add(value)
                continue
            if isinstance(value, str):
                value = value.strip().lower().removesuffix("y")
                value = int(value)
            elif isinstance(value, float):
                if not value.is_integer():
                    raise ValueError(f"Horizon must be a whole number of years, got {value!r}")
                value = int(value)
            horizons.add(Horizon(value))
        except (ValueError, TypeError) as e:
            raise ConfigError(f"Invalid horizon {value!r}: {e}") from e
    if not horizons:
        raise ConfigError("At least one follow-up horizon is required")
    return tuple(sorted(horizons))


def aggregate(
    timeline: PatientTimeline,
    canonical_episodes: typing.Iterable[CanonicalEpisode],
    horizons: typing.Sequence[Horizon],
) -> BurdenSummary:
    index_date = timeline.index_date
    censor_date = timeline.censor_date

    seen: set[str] = set()
    incident: list[IncidentOnset] = []
    pre_existing: list[PreExistingCondition] = []
    for episode in canonical_episodes:
        if episode.patient_id != timeline.patient_id:
            raise InvariantError(
                f"Episode of {episode.patient_id!r} passed to the summary of {timeline.patient_id!r}"
            )
        if episode.condition_name in seen:
            raise InvariantError(
                f"Patient {timeline.patient_id!r}: more than one canonical episode "
                f"for {episode.condition_name!r}"
            )
        seen.add(episode.condition_name)

        if episode.onset_date < index_date:
            pre_existing.append(
                PreExistingCondition(
                    condition_name=episode.condition_name,
                    onset_date=episode.onset_date,
                    years_before_index=years_between(episode.onset_date, index_date),
                )
            )
        elif episode.onset_date <= censor_date:
            incident.append(
                IncidentOnset(
                    condition_name=episode.condition_name,
                    onset_date=episode.onset_date,
                    years_since_index=years_between(index_date, episode.onset_date),
                )
            )

    incident.sort(key=lambda onset: (onset.onset_date, onset.condition_name))
    pre_existing.sort(key=lambda condition: (condition.onset_date, condition.condition_name))

    counts: dict[str, int | None] = {}
    for horizon in horizons:
        horizon_end = add_years(index_date, horizon.years)
        if censor_date < horizon_end:
            counts[horizon.label] = None
        else:
            counts[horizon.label] = sum(1 for onset in incident if onset.onset_date <= horizon_end)

    return BurdenSummary(
        patient_id=timeline.patient_id,
        index_date=index_date,
        censor_date=censor_date,
        follow_up_years=years_between(index_date, censor_date),
        cumulative_condition_count=counts,
        incident=tuple(incident),
        pre_existing=tuple(pre_existing),
    )


class BurdenAggregator:
    """Holds a validated horizon configuration and applies `aggregate`."""

    def __init__(self, horizons: typing.Iterable[typing.Any] = DEFAULT_HORIZONS):
        self.horizons = parse_horizons(horizons)

    def aggregate(
        self, timeline: PatientTimeline, canonical_episodes: typing.Iterable[CanonicalEpisode]
    ) -> BurdenSummary:
        return aggregate(timeline, canonical_episodes, self.horizons)
