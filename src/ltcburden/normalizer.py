"""
Event normalizer.

Turns heterogeneous raw extract rows (dicts or pandas rows with
source-specific field names) into ClinicalEvent instances.

Policy:
- malformed rows (bad or implausible date, unknown coding system, invalid
  code, missing patient id, unknown event type) are skipped and counted per
  reason, never fatal
- rows for patients outside the supplied cohort are dropped silently (counted
  as out-of-cohort, not reported as warnings)
"""

import logging
import typing
from collections import Counter
from dataclasses import dataclass, field
from datetime import date

import pandas as pd
from stairval.notepad import Notepad

from .coding import CodingSystem, normalize_code
from .dates import parse_date
from .errors import DataQualityWarning
from .event import ClinicalEvent, EventType
from .loader import normalize_header

logger = logging.getLogger(__name__)

# Canonical field → source spellings seen in extracts (after header normalization)
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "patient_id": ("patient_id", "patid", "person_id", "subject_id", "patient"),
    "coding_system": ("coding_system", "system", "vocabulary", "code_type", "terminology"),
    "code": ("code", "read_code", "readcode", "icd10", "icd10_code", "icd_code",
             "snomed_code", "concept_code", "opcs_code"),
    "event_date": ("event_date", "eventdate", "date", "obsdate", "event_dt", "date_of_event"),
    "event_type": ("event_type", "type", "category", "event_category"),
}

# Events dated before this are placeholders in primary care extracts
MIN_VALID_DATE = date(1900, 1, 1)


@dataclass
class NormalizationReport:
    """
    Diagnostic counters for one normalization run.

    Attributes:
        records_read: Raw records seen.
        events_emitted: ClinicalEvents produced.
        out_of_cohort: Records dropped because the patient is not in the cohort.
        skipped_by_reason: Malformed records per skip reason.
        decade_counts: Emitted events per decade of event_date (1990, 2000, ...).
    """

    records_read: int = 0
    events_emitted: int = 0
    out_of_cohort: int = 0
    skipped_by_reason: Counter = field(default_factory=Counter)
    decade_counts: Counter = field(default_factory=Counter)

    @property
    def records_skipped(self) -> int:
        return sum(self.skipped_by_reason.values())

    def merge(self, other: "NormalizationReport") -> "NormalizationReport":
        return NormalizationReport(
            records_read=self.records_read + other.records_read,
            events_emitted=self.events_emitted + other.events_emitted,
            out_of_cohort=self.out_of_cohort + other.out_of_cohort,
            skipped_by_reason=self.skipped_by_reason + other.skipped_by_reason,
            decade_counts=self.decade_counts + other.decade_counts,
        )


class EventNormalizer:
    """
    Stateless converter from raw records to ClinicalEvents.

    Args:
        cohort: patient ids to keep; None keeps everyone.
        default_coding_system: used when a record has no coding-system field
            and its code carries no 'SYSTEM:' prefix.
        default_event_type: used when a record has no event-type field.
        min_valid_date / max_valid_date: events outside this range are skipped
            as implausible.
    """

    def __init__(
        self,
        cohort: typing.Collection[str] | None = None,
        default_coding_system: CodingSystem | None = None,
        default_event_type: EventType = EventType.DIAGNOSIS,
        min_valid_date: date = MIN_VALID_DATE,
        max_valid_date: date | None = None,
    ):
        self._cohort = frozenset(str(p) for p in cohort) if cohort is not None else None
        self._default_coding_system = default_coding_system
        self._default_event_type = default_event_type
        self._min_valid_date = min_valid_date
        self._max_valid_date = max_valid_date

    def normalize(
        self,
        raw_record: typing.Mapping[str, typing.Any] | pd.Series,
        report: NormalizationReport | None = None,
        notepad: Notepad | None = None,
    ) -> ClinicalEvent | None:
        """
        Normalize one raw record. Returns None when the record is skipped.
        Skips are added to `report` (if given) and malformed records to `notepad`.
        """
        if report is not None:
            report.records_read += 1
        try:
            event = self.parse_record(raw_record)
        except DataQualityWarning as warning:
            if report is not None:
                report.skipped_by_reason[warning.reason] += 1
            if notepad is not None:
                notepad.add_warning(str(warning))
            logger.debug(f"Skipping record: {warning}")
            return None

        if event is None:
            if report is not None:
                report.out_of_cohort += 1
            return None

        if report is not None:
            report.events_emitted += 1
            report.decade_counts[(event.event_date.year // 10) * 10] += 1
        return event

    def normalize_records(
        self,
        raw_records: typing.Iterable[typing.Mapping[str, typing.Any]],
        notepad: Notepad | None = None,
    ) -> tuple[list[ClinicalEvent], NormalizationReport]:
        report = NormalizationReport()
        events: list[ClinicalEvent] = []
        for raw_record in raw_records:
            event = self.normalize(raw_record, report, notepad)
            if event is not None:
                events.append(event)
        logger.info(
            f"Normalized {report.records_read} records: {report.events_emitted} events, "
            f"{report.records_skipped} skipped, {report.out_of_cohort} out of cohort"
        )
        return events, report

    def normalize_frame(
        self, df: pd.DataFrame, notepad: Notepad | None = None
    ) -> tuple[list[ClinicalEvent], NormalizationReport]:
        """Normalize every row of an events table."""
        return self.normalize_records((row for _, row in df.iterrows()), notepad)

    def parse_record(self, raw_record: typing.Mapping[str, typing.Any] | pd.Series) -> ClinicalEvent | None:
        """
        Build a ClinicalEvent from one raw record.
        Returns None if the patient is outside the cohort.
        Raises DataQualityWarning if the record is malformed.
        """
        fields = self._extract_fields(raw_record)

        patient_id = self._parse_patient_id(fields.get("patient_id"))
        if self._cohort is not None and patient_id not in self._cohort:
            return None

        raw_code = fields.get("code")
        raw_system = fields.get("coding_system")
        if _is_blank(raw_system) and isinstance(raw_code, str) and ":" in raw_code:
            # CURIE style code, e.g. 'ICD10:E11.9'
            raw_system, raw_code = raw_code.split(":", 1)
        coding_system = self._parse_coding_system(raw_system)

        try:
            code = normalize_code(coding_system, raw_code)
        except ValueError as e:
            raise DataQualityWarning("invalid_code", f"Patient {patient_id!r}: {e}")

        event_date = parse_date(fields.get("event_date"))
        if event_date is None:
            raise DataQualityWarning(
                "bad_date", f"Patient {patient_id!r}: unparseable event date {fields.get('event_date')!r}"
            )
        if event_date < self._min_valid_date or (
            self._max_valid_date is not None and event_date > self._max_valid_date
        ):
            raise DataQualityWarning(
                "implausible_date", f"Patient {patient_id!r}: implausible event date {event_date.isoformat()}"
            )

        event_type = self._parse_event_type(fields.get("event_type"))
        return ClinicalEvent(
            patient_id=patient_id,
            coding_system=coding_system,
            code=code,
            event_date=event_date,
            event_type=event_type,
        )

    @staticmethod
    def _extract_fields(raw_record: typing.Mapping[str, typing.Any] | pd.Series) -> dict[str, typing.Any]:
        """Pick the canonical fields out of a record using FIELD_ALIASES."""
        by_header = {normalize_header(key): value for key, value in raw_record.items()}
        fields: dict[str, typing.Any] = {}
        for canonical, aliases in FIELD_ALIASES.items():
            for alias in aliases:
                if alias in by_header and not _is_blank(by_header[alias]):
                    fields[canonical] = by_header[alias]
                    break
        return fields

    @staticmethod
    def _parse_patient_id(value: typing.Any) -> str:
        if _is_blank(value):
            raise DataQualityWarning("missing_patient_id", "Record has no patient identifier")
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value).strip()

    def _parse_coding_system(self, value: typing.Any) -> CodingSystem:
        if _is_blank(value):
            if self._default_coding_system is None:
                raise DataQualityWarning("unknown_coding_system", "Record has no coding system")
            return self._default_coding_system
        if isinstance(value, CodingSystem):
            return value
        try:
            return CodingSystem.from_label(value)
        except ValueError as e:
            raise DataQualityWarning("unknown_coding_system", str(e))

    def _parse_event_type(self, value: typing.Any) -> EventType:
        if _is_blank(value):
            return self._default_event_type
        if isinstance(value, EventType):
            return value
        try:
            return EventType.from_label(value)
        except ValueError as e:
            raise DataQualityWarning("unknown_event_type", str(e))


def _is_blank(value: typing.Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False
