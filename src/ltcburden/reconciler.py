"""
Episode reconciler.

Reduces a raw ConditionEpisode to its CanonicalEpisode. The matcher already
gathered every qualifying date of the condition, so reconciliation is:

- onset_date = earliest event date
- last_seen_date = latest event date
- occurrence_count = distinct dates, or every date when the condition counts
  repeats
"""

import typing

from .episode import CanonicalEpisode, ConditionEpisode
from .errors import InvariantError


def reconcile(raw_episode: ConditionEpisode) -> CanonicalEpisode:
    if not raw_episode.event_dates:
        raise InvariantError(
            f"Patient {raw_episode.patient_id!r}: empty episode for "
            f"{raw_episode.condition_name!r} reached reconciliation"
        )
    if raw_episode.count_repeats:
        occurrence_count = len(raw_episode.event_dates)
    else:
        occurrence_count = len(set(raw_episode.event_dates))
    return CanonicalEpisode(
        patient_id=raw_episode.patient_id,
        condition_name=raw_episode.condition_name,
        onset_date=min(raw_episode.event_dates),
        last_seen_date=max(raw_episode.event_dates),
        occurrence_count=occurrence_count,
    )


def reconcile_all(raw_episodes: typing.Iterable[ConditionEpisode]) -> list[CanonicalEpisode]:
    """
    Reconcile every raw episode of one patient.
    Raises InvariantError if two raw episodes share a (patient, condition) pair.
    """
    canonical: dict[tuple[str, str], CanonicalEpisode] = {}
    for raw_episode in raw_episodes:
        key = (raw_episode.patient_id, raw_episode.condition_name)
        if key in canonical:
            raise InvariantError(
                f"Patient {key[0]!r}: more than one raw episode for {key[1]!r}"
            )
        canonical[key] = reconcile(raw_episode)
    return list(canonical.values())
