"""
Clinical event domain model.

Defines the ClinicalEvent dataclass, the uniform shape every raw extract row
is normalized into before matching.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum

from .coding import CodingSystem


class EventType(Enum):
    DIAGNOSIS = "diagnosis"
    PROCEDURE = "procedure"

    @classmethod
    def from_label(cls, label: str) -> "EventType":
        key = str(label).strip().lower()
        mapping = {
            "diagnosis": cls.DIAGNOSIS,
            "dx": cls.DIAGNOSIS,
            "condition": cls.DIAGNOSIS,
            "clinical": cls.DIAGNOSIS,
            "procedure": cls.PROCEDURE,
            "px": cls.PROCEDURE,
            "operation": cls.PROCEDURE,
        }
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"Unknown event type label: {label!r}")


@dataclass(frozen=True)
class ClinicalEvent:
    """
    A single coded clinical event for a patient.

    Attributes:
        patient_id: Non-empty patient identifier.
        coding_system: Terminology of `code`.
        code: Code in canonical form for its coding system.
        event_date: Calendar date the event was recorded for.
        event_type: Diagnosis or procedure.
    """

    patient_id: str
    coding_system: CodingSystem
    code: str
    event_date: date
    event_type: EventType = EventType.DIAGNOSIS

    def __post_init__(self):
        if not isinstance(self.patient_id, str) or not self.patient_id.strip():
            raise ValueError(f"Invalid patient ID: {self.patient_id!r}")
        if not isinstance(self.coding_system, CodingSystem):
            raise ValueError(f"Invalid coding system: {self.coding_system!r}")
        if not isinstance(self.code, str) or not self.code:
            raise ValueError(f"Invalid code: {self.code!r}")
        if not isinstance(self.event_date, date):
            raise ValueError(f"Invalid event_date: {self.event_date!r}")
        if not isinstance(self.event_type, EventType):
            raise ValueError(f"Invalid event_type: {self.event_type!r}")
