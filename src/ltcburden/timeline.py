"""
Patient timeline domain model.

A PatientTimeline anchors one patient's normalized events to their index date
(lymphoma diagnosis) and censor date (end of observation).
"""

import logging
import typing
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

import pandas as pd
from stairval.notepad import Notepad

from .codelist import CodeListRegistry
from .dates import parse_date
from .errors import ConfigError, InvariantError
from .event import ClinicalEvent
from .matcher import ConditionMatcher

logger = logging.getLogger(__name__)

COHORT_KEY_COLUMNS = {"patient_id", "censor_date"}


@dataclass(frozen=True)
class CohortMember:
    """Index and censor dates of one eligible patient."""

    patient_id: str
    index_date: date | None
    censor_date: date


@dataclass(frozen=True)
class PatientTimeline:
    """
    Attributes:
        patient_id: Unique patient identifier.
        index_date: Start of follow-up.
        censor_date: Last date the patient is known to be under observation.
        events: The patient's events ordered by event_date.
    """

    patient_id: str
    index_date: date
    censor_date: date
    events: tuple[ClinicalEvent, ...] = ()

    def __post_init__(self):
        if not isinstance(self.patient_id, str) or not self.patient_id.strip():
            raise ValueError(f"Invalid patient ID: {self.patient_id!r}")
        if not isinstance(self.index_date, date) or not isinstance(self.censor_date, date):
            raise ValueError(
                f"Patient {self.patient_id!r}: index_date and censor_date must be dates"
            )
        if self.censor_date < self.index_date:
            raise InvariantError(
                f"Patient {self.patient_id!r}: censor date {self.censor_date} precedes "
                f"index date {self.index_date}"
            )
        for event in self.events:
            if event.patient_id != self.patient_id:
                raise InvariantError(
                    f"Timeline of {self.patient_id!r} holds an event of {event.patient_id!r}"
                )
        ordered = tuple(sorted(self.events, key=lambda e: (e.event_date, e.coding_system.value, e.code)))
        object.__setattr__(self, "events", ordered)

    @property
    def follow_up_days(self) -> int:
        return (self.censor_date - self.index_date).days


def cohort_from_frame(df: pd.DataFrame) -> dict[str, CohortMember]:
    """
    Read the cohort table (one row per eligible patient).
    Required columns: patient_id, censor_date. Optional column: index_date
    (may be derived later with earliest_condition_dates).

    Raises ConfigError on missing columns, duplicate patients or bad dates,
    since the cohort is resolved upstream and must be clean.
    """
    missing = COHORT_KEY_COLUMNS - set(df.columns)
    if missing:
        raise ConfigError(f"Cohort table: missing required columns: {sorted(missing)}")

    cohort: dict[str, CohortMember] = {}
    for index, row in df.iterrows():
        patient_id = str(row["patient_id"]).strip()
        if not patient_id or patient_id.lower() == "nan":
            raise ConfigError(f"Cohort table, row {index}: missing patient_id")
        if patient_id in cohort:
            raise ConfigError(f"Cohort table, row {index}: duplicate patient {patient_id!r}")
        censor_date = parse_date(row["censor_date"])
        if censor_date is None:
            raise ConfigError(f"Cohort table, row {index}: bad censor_date {row['censor_date']!r}")
        raw_index = row.get("index_date")
        index_date = parse_date(raw_index)
        if index_date is None and raw_index is not None and not pd.isna(raw_index) and str(raw_index).strip():
            raise ConfigError(f"Cohort table, row {index}: bad index_date {raw_index!r}")
        cohort[patient_id] = CohortMember(patient_id, index_date, censor_date)
    return cohort


def earliest_condition_dates(
    events: typing.Iterable[ClinicalEvent],
    registry: CodeListRegistry,
    condition_name: str,
) -> dict[str, date]:
    """
    Onset of `condition_name` per patient, ascertained with the same rules as
    any other condition (threshold, repeats, window, requirement). Used to
    derive index dates from the index-event code list; patients in whom the
    condition is never ascertained are left out.
    """
    if condition_name not in registry:
        raise ConfigError(f"Unknown index condition: {condition_name!r}")
    by_patient: dict[str, list[ClinicalEvent]] = defaultdict(list)
    for event in events:
        by_patient[event.patient_id].append(event)

    matcher = ConditionMatcher(registry)
    onsets: dict[str, date] = {}
    for patient_id, patient_events in by_patient.items():
        for episode in matcher.match_events(patient_id, patient_events, [condition_name]):
            onsets[patient_id] = min(episode.event_dates)
    return onsets


def build_timelines(
    events: typing.Iterable[ClinicalEvent],
    cohort: typing.Mapping[str, CohortMember],
    notepad: Notepad | None = None,
    derived_index_dates: typing.Mapping[str, date] | None = None,
) -> list[PatientTimeline]:
    """
    Group events by patient and anchor them to the cohort's dates.

    - every cohort member gets a timeline, even without events
    - a member without an index date falls back to `derived_index_dates`;
      members with neither are left out with a warning
    - members censored before their index date are left out with a warning
      (eligibility is decided upstream; this only guards the invariant)
    - events of patients outside the cohort are ignored
    """
    grouped: dict[str, list[ClinicalEvent]] = defaultdict(list)
    for event in events:
        if event.patient_id in cohort:
            grouped[event.patient_id].append(event)

    timelines: list[PatientTimeline] = []
    for patient_id, member in cohort.items():
        index_date = member.index_date
        if index_date is None and derived_index_dates is not None:
            index_date = derived_index_dates.get(patient_id)
        if index_date is None:
            _warn(notepad, f"Patient {patient_id!r}: no index date, left out")
            continue
        if member.censor_date < index_date:
            _warn(notepad, f"Patient {patient_id!r}: censored before index date, left out")
            continue
        timelines.append(
            PatientTimeline(
                patient_id=patient_id,
                index_date=index_date,
                censor_date=member.censor_date,
                events=tuple(grouped.get(patient_id, ())),
            )
        )
    logger.info(f"Built {len(timelines)} timelines from a cohort of {len(cohort)}")
    return timelines


def _warn(notepad: Notepad | None, message: str) -> None:
    logger.warning(message)
    if notepad is not None:
        notepad.add_warning(message)
