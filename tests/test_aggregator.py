"""
Censoring-aware burden aggregation:
- counts per horizon are None once the patient was censored before the horizon ended
- pre-existing conditions never count as incident burden
- years_since_index is days / 365.25
"""

import json
from datetime import date

import pytest

from conftest import make_timeline
from ltcburden.aggregator import BurdenAggregator, aggregate, parse_horizons
from ltcburden.episode import CanonicalEpisode
from ltcburden.errors import ConfigError, InvariantError
from ltcburden.summary import Horizon

HORIZONS = parse_horizons([1, 5, 10])


def _episode(condition: str, onset: str, patient: str = "P1") -> CanonicalEpisode:
    onset_date = date.fromisoformat(onset)
    return CanonicalEpisode(patient, condition, onset_date, onset_date, 1)


class TestParseHorizons:

    def test_sorted_and_deduplicated(self):
        assert parse_horizons([10, "5y", 1, 5.0]) == (Horizon(1), Horizon(5), Horizon(10))

    @pytest.mark.parametrize("bad", [[], [0], [-1], [2.5], ["soon"], [True]])
    def test_invalid_horizons_raise_config_error(self, bad):
        with pytest.raises(ConfigError):
            parse_horizons(bad)

    def test_labels(self):
        assert [h.label for h in HORIZONS] == ["1y", "5y", "10y"]


def test_zero_conditions_give_zero_counts():
    timeline = make_timeline("P1", "2005-01-01", "2020-01-01")
    summary = aggregate(timeline, [], HORIZONS)
    assert summary.cumulative_condition_count == {"1y": 0, "5y": 0, "10y": 0}
    assert summary.incident == ()
    assert summary.pre_existing == ()
    assert not summary.has_conditions


def test_censored_horizons_are_none_not_zero():
    timeline = make_timeline("P1", "2015-01-01", "2017-01-01")
    summary = aggregate(timeline, [_episode("Hypertension", "2015-06-01")], parse_horizons([1, 2, 3, 5, 10]))
    assert summary.cumulative_condition_count == {"1y": 1, "2y": 1, "3y": None, "5y": None, "10y": None}


def test_counts_are_cumulative_and_monotonic():
    timeline = make_timeline("P1", "2005-01-01", "2020-01-01")
    episodes = [
        _episode("Hypertension", "2005-06-01"),
        _episode("Diabetes", "2008-01-01"),
        _episode("Cancer", "2013-01-01"),
    ]
    counts = aggregate(timeline, episodes, HORIZONS).cumulative_condition_count
    assert counts == {"1y": 1, "5y": 2, "10y": 3}
    values = [counts[h.label] for h in HORIZONS]
    assert values == sorted(values)


def test_onset_on_horizon_end_is_inside_the_window():
    timeline = make_timeline("P1", "2010-01-01", "2020-01-01")
    summary = aggregate(timeline, [_episode("Diabetes", "2015-01-01")], HORIZONS)
    assert summary.cumulative_condition_count["5y"] == 1
    assert summary.cumulative_condition_count["1y"] == 0


def test_followed_exactly_to_horizon_end_is_observed():
    timeline = make_timeline("P1", "2015-01-01", "2017-01-01")
    summary = aggregate(timeline, [], parse_horizons([2]))
    assert summary.cumulative_condition_count == {"2y": 0}


def test_years_since_index_uses_day_count():
    timeline = make_timeline("P1", "2015-01-01", "2025-01-01")
    [onset] = aggregate(timeline, [_episode("Diabetes", "2016-07-02")], HORIZONS).incident
    assert onset.years_since_index == pytest.approx((date(2016, 7, 2) - date(2015, 1, 1)).days / 365.25)
    assert onset.years_since_index == pytest.approx(1.50, abs=0.01)


def test_pre_existing_conditions_are_kept_apart():
    timeline = make_timeline("P1", "2015-01-01", "2030-01-01")
    summary = aggregate(
        timeline,
        [_episode("Hypertension", "2010-01-01"), _episode("Diabetes", "2016-01-01")],
        HORIZONS,
    )
    assert [c.condition_name for c in summary.pre_existing] == ["Hypertension"]
    assert [o.condition_name for o in summary.incident] == ["Diabetes"]
    assert summary.cumulative_condition_count == {"1y": 1, "5y": 1, "10y": 1}
    assert summary.pre_existing[0].years_before_index == pytest.approx(1826 / 365.25)


def test_onset_on_index_date_is_incident():
    timeline = make_timeline("P1", "2015-01-01", "2030-01-01")
    summary = aggregate(timeline, [_episode("Diabetes", "2015-01-01")], HORIZONS)
    assert summary.incident[0].years_since_index == 0.0
    assert summary.pre_existing == ()


def test_onset_after_censoring_is_ignored():
    timeline = make_timeline("P1", "2015-01-01", "2018-01-01")
    summary = aggregate(timeline, [_episode("Diabetes", "2019-01-01")], HORIZONS)
    assert summary.incident == ()
    assert summary.pre_existing == ()
    assert summary.cumulative_condition_count == {"1y": 0, "5y": None, "10y": None}


def test_aggregate_is_idempotent():
    timeline = make_timeline("P1", "2005-01-01", "2020-01-01")
    episodes = [_episode("Hypertension", "2005-06-01"), _episode("Diabetes", "2008-01-01")]
    assert aggregate(timeline, episodes, HORIZONS) == aggregate(timeline, episodes, HORIZONS)


def test_foreign_or_duplicate_episodes_are_invariant_errors():
    timeline = make_timeline("P1", "2005-01-01", "2020-01-01")
    with pytest.raises(InvariantError):
        aggregate(timeline, [_episode("Diabetes", "2008-01-01", patient="P2")], HORIZONS)
    with pytest.raises(InvariantError):
        aggregate(timeline, [_episode("Diabetes", "2008-01-01"), _episode("Diabetes", "2009-01-01")], HORIZONS)


def test_cumulative_curve():
    timeline = make_timeline("P1", "2015-01-01", "2030-01-01")
    summary = aggregate(
        timeline,
        [_episode("A", "2016-01-01"), _episode("B", "2016-01-01"), _episode("C", "2020-01-01")],
        HORIZONS,
    )
    curve = summary.cumulative_curve()
    assert curve[0] == (0.0, 0)
    assert [count for _, count in curve] == [0, 2, 3]


def test_aggregator_wraps_horizon_config():
    aggregator = BurdenAggregator([5, 1])
    assert aggregator.horizons == (Horizon(1), Horizon(5))
    summary = aggregator.aggregate(make_timeline("P1", "2005-01-01", "2020-01-01"), [])
    assert list(summary.cumulative_condition_count) == ["1y", "5y"]


def test_summary_to_dict_is_serializable():
    timeline = make_timeline("P1", "2015-01-01", "2017-01-01")
    summary = aggregate(timeline, [_episode("Diabetes", "2016-06-01")], HORIZONS)
    payload = json.loads(json.dumps(summary.to_dict()))
    assert payload["cumulative_condition_count"] == {"1y": 0, "5y": None, "10y": None}
    assert payload["incident"][0]["onset_date"] == "2016-06-01"
