"""
Condition matcher.

Scans one patient's timeline against the code-list registry and emits one raw
ConditionEpisode per condition with enough qualifying occurrences.

A condition is ascertained on the first date where
  - its occurrences up to that date (within its lookback window, if any)
    reach min_occurrences, and
  - the condition it requires, if any, is ascertained on that same date.
Occurrences older than the window of that first date are not part of the
episode. Events after the censor date are outside observation and never count.
"""

import logging
import typing
from collections import defaultdict
from datetime import date

from .codelist import CodeListRegistry
from .coding import CodingSystem
from .dates import add_years
from .episode import ConditionEpisode
from .event import ClinicalEvent

if typing.TYPE_CHECKING:
    from .timeline import PatientTimeline

logger = logging.getLogger(__name__)

Hit = tuple[date, CodingSystem, str]


class ConditionMatcher:
    def __init__(self, registry: CodeListRegistry):
        self._registry = registry

    def match(self, timeline: "PatientTimeline") -> list[ConditionEpisode]:
        """
        Process:
        1) drop events recorded after the censor date
        2) collect, per condition, every event whose code the registry maps to it
        3) apply each condition's repeat, window and requirement rules
        4) return episodes of reported (non-supporting) conditions ordered by name

        The timeline is only read; the result depends on nothing but the
        timeline and the registry.
        """
        observed = [event for event in timeline.events if event.event_date <= timeline.censor_date]
        return [
            episode
            for episode in self.match_events(timeline.patient_id, observed)
            if not self._registry.definition(episode.condition_name).supporting
        ]

    def match_events(
        self,
        patient_id: str,
        events: typing.Iterable[ClinicalEvent],
        condition_names: typing.Iterable[str] | None = None,
    ) -> list[ConditionEpisode]:
        """
        Episodes of one patient's events, supporting conditions included.
        `condition_names` limits the result; requirements are still checked
        against every condition.
        """
        hits: dict[str, list[Hit]] = defaultdict(list)
        for event in events:
            for condition_name in self._registry.lookup(event.coding_system, event.code):
                hits[condition_name].append((event.event_date, event.coding_system, event.code))
        occurrences = {name: self._occurrence_dates(name, condition_hits) for name, condition_hits in hits.items()}

        wanted = sorted(hits) if condition_names is None else sorted(set(condition_names) & set(hits))
        episodes: list[ConditionEpisode] = []
        for condition_name in wanted:
            ascertained_on = self._first_qualifying_date(condition_name, occurrences)
            if ascertained_on is None:
                logger.debug(
                    f"Patient {patient_id!r}: {condition_name!r} has "
                    f"{len(occurrences[condition_name])} occurrence(s), not ascertained"
                )
                continue
            window_start = self._window_start(condition_name, ascertained_on)
            kept = [hit for hit in hits[condition_name] if window_start is None or hit[0] > window_start]
            episodes.append(self._to_episode(patient_id, condition_name, kept))
        return episodes

    def _occurrence_dates(self, condition_name: str, hits: typing.Sequence[Hit]) -> list[date]:
        if self._registry.count_repeats(condition_name):
            return sorted(hit[0] for hit in hits)
        # the same code twice on one date is a single occurrence
        return sorted({hit[0] for hit in hits})

    def _window_start(self, condition_name: str, on: date) -> date | None:
        """Occurrences must fall after this date to count on `on`; None means no window."""
        lookback_years = self._registry.definition(condition_name).lookback_years
        return add_years(on, -lookback_years) if lookback_years is not None else None

    def _requirement_chain(self, condition_name: str) -> list[str]:
        chain = [condition_name]
        required = self._registry.definition(condition_name).requires
        while required is not None:
            chain.append(required)
            required = self._registry.definition(required).requires
        return chain

    def _qualifies(self, condition_name: str, on: date, occurrences: typing.Mapping[str, list[date]]) -> bool:
        window_start = self._window_start(condition_name, on)
        count = sum(
            1
            for when in occurrences.get(condition_name, ())
            if when <= on and (window_start is None or when > window_start)
        )
        return count >= self._registry.min_occurrences(condition_name)

    def _first_qualifying_date(
        self, condition_name: str, occurrences: typing.Mapping[str, list[date]]
    ) -> date | None:
        chain = self._requirement_chain(condition_name)
        # the answer can only change on a date some condition of the chain was recorded
        candidates = sorted({when for name in chain for when in occurrences.get(name, ())})
        for on in candidates:
            if all(self._qualifies(name, on, occurrences) for name in chain):
                return on
        return None

    def _to_episode(self, patient_id: str, condition_name: str, hits: typing.Sequence[Hit]) -> ConditionEpisode:
        count_repeats = self._registry.count_repeats(condition_name)
        if count_repeats:
            event_dates = tuple(sorted(hit[0] for hit in hits))
            occurrence_count = len(event_dates)
        else:
            event_dates = tuple(sorted(hit[0] for hit in set(hits)))
            occurrence_count = len(set(event_dates))
        return ConditionEpisode(
            patient_id=patient_id,
            condition_name=condition_name,
            event_dates=event_dates,
            occurrence_count=occurrence_count,
            count_repeats=count_repeats,
        )
