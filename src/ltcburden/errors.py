"""
Error taxonomy for the burden pipeline.

- ConfigError: malformed or self-contradictory study configuration
  (code lists, horizons, cohort table). Fatal for the whole run.
- DataQualityWarning: one malformed raw record. Raised by field parsers and
  always caught by the normalizer, which counts it and moves on.
- InvariantError: an internal contract was broken. Aborts the affected
  patient only.
"""


class ConfigError(ValueError):
    """Study configuration cannot be trusted; nothing downstream should run."""


class DataQualityWarning(Warning):
    """
    A single raw record could not be turned into a ClinicalEvent.

    Attributes:
        reason: short machine-friendly key used for skip counters
            (e.g. 'bad_date', 'unknown_coding_system').
    """

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


class InvariantError(RuntimeError):
    """A pipeline stage received input that violates its contract."""
