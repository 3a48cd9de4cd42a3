"""
Episode domain models.

- ConditionEpisode: raw matcher output, every qualifying event date of one
  condition for one patient.
- CanonicalEpisode: the reconciled episode with onset and last-seen dates.
"""

from dataclasses import dataclass
from datetime import date

from .errors import InvariantError


@dataclass(frozen=True)
class ConditionEpisode:
    """
    Attributes:
        patient_id: Unique patient identifier.
        condition_name: Condition the events count toward.
        event_dates: Qualifying event dates in ascending order; a date may
            repeat when different codes were recorded that day.
        occurrence_count: Occurrences under the condition's counting rule.
        count_repeats: Counting rule the occurrences were counted under.
    """

    patient_id: str
    condition_name: str
    event_dates: tuple[date, ...]
    occurrence_count: int
    count_repeats: bool = False


@dataclass(frozen=True)
class CanonicalEpisode:
    """
    Attributes:
        patient_id: Unique patient identifier.
        condition_name: Condition name.
        onset_date: Earliest qualifying event date.
        last_seen_date: Latest qualifying event date.
        occurrence_count: Qualifying occurrences (>= 1).
    """

    patient_id: str
    condition_name: str
    onset_date: date
    last_seen_date: date
    occurrence_count: int

    def __post_init__(self):
        if self.onset_date > self.last_seen_date:
            raise InvariantError(
                f"Patient {self.patient_id!r}, {self.condition_name!r}: onset "
                f"{self.onset_date} after last seen {self.last_seen_date}"
            )
        if self.occurrence_count < 1:
            raise InvariantError(
                f"Patient {self.patient_id!r}, {self.condition_name!r}: "
                f"occurrence_count must be >= 1, got {self.occurrence_count}"
            )
