import typing
from datetime import date

import pytest

from ltcburden.codelist import CodeListRegistry
from ltcburden.coding import CodingSystem
from ltcburden.event import ClinicalEvent, EventType
from ltcburden.timeline import PatientTimeline

CODE_LISTS = {
    "Diabetes": {
        "codes": [("ICD10", "E11"), ("READ2", "C10..")],
        "min_occurrences": 2,
        "match_descendants": True,
    },
    "Hypertension": {
        "codes": [("ICD10", "I10"), ("READ2", "G20..")],
    },
    "Cancer": {
        "codes": [("READ2", "B...."), ("ICD10", "C50")],
        "match_descendants": True,
        # lymphoma is the index event, not a comorbidity
        "exclude": [("READ2", "B6...")],
    },
    "Chronic kidney disease": {
        "codes": [("SNOMED", "709044004")],
        "min_occurrences": 3,
        "count_repeats": True,
    },
}


@pytest.fixture(scope="session")
def code_lists() -> dict[str, dict[str, typing.Any]]:
    return CODE_LISTS


@pytest.fixture(scope="session")
def registry() -> CodeListRegistry:
    """A small registry covering thresholds, repeats, hierarchies and exclusions."""
    return CodeListRegistry.from_mapping(CODE_LISTS)


def make_event(patient_id: str, system: str, code: str, when: str,
               event_type: EventType = EventType.DIAGNOSIS) -> ClinicalEvent:
    return ClinicalEvent(
        patient_id=patient_id,
        coding_system=CodingSystem(system),
        code=code,
        event_date=date.fromisoformat(when),
        event_type=event_type,
    )


def make_timeline(patient_id: str, index: str, censor: str,
                  events: typing.Iterable[tuple[str, str, str]] = ()) -> PatientTimeline:
    """`events` holds (coding_system, code, ISO date) triples."""
    return PatientTimeline(
        patient_id=patient_id,
        index_date=date.fromisoformat(index),
        censor_date=date.fromisoformat(censor),
        events=tuple(make_event(patient_id, system, code, when) for system, code, when in events),
    )
