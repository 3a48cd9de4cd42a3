from datetime import date

import pytest

from ltcburden.episode import CanonicalEpisode, ConditionEpisode
from ltcburden.errors import InvariantError
from ltcburden.reconciler import reconcile, reconcile_all


def _raw(dates, count_repeats=False, condition="Diabetes", patient="P1") -> ConditionEpisode:
    return ConditionEpisode(
        patient_id=patient,
        condition_name=condition,
        event_dates=tuple(dates),
        occurrence_count=len(set(dates)),
        count_repeats=count_repeats,
    )


def test_reconcile_counts_distinct_dates():
    episode = reconcile(_raw([date(2019, 3, 1), date(2019, 3, 1), date(2020, 1, 15)]))
    assert episode.occurrence_count == 2
    assert episode.onset_date == date(2019, 3, 1)
    assert episode.last_seen_date == date(2020, 1, 15)


def test_reconcile_counts_every_date_when_repeats_count():
    episode = reconcile(_raw([date(2019, 3, 1), date(2019, 3, 1), date(2020, 1, 15)], count_repeats=True))
    assert episode.occurrence_count == 3


def test_reconcile_single_date():
    episode = reconcile(_raw([date(2019, 3, 1)]))
    assert episode.onset_date == episode.last_seen_date == date(2019, 3, 1)


def test_empty_episode_is_an_invariant_error():
    with pytest.raises(InvariantError):
        reconcile(_raw([]))


def test_canonical_episode_rejects_onset_after_last_seen():
    with pytest.raises(InvariantError):
        CanonicalEpisode("P1", "Diabetes", date(2020, 1, 1), date(2019, 1, 1), 1)


def test_reconcile_all_yields_one_episode_per_condition():
    episodes = reconcile_all([_raw([date(2019, 3, 1)]), _raw([date(2018, 1, 1)], condition="Hypertension")])
    assert [e.condition_name for e in episodes] == ["Diabetes", "Hypertension"]
    with pytest.raises(InvariantError):
        reconcile_all([_raw([date(2019, 3, 1)]), _raw([date(2018, 1, 1)])])
