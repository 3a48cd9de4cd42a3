"""
End-to-end burden pipeline.

Each PatientTimeline goes through matcher → reconciler → aggregator on its own;
the CodeListRegistry is the only shared input and is read-only, so patients
can be spread over a process pool. An InvariantError aborts that patient only
and is recorded in the diagnostics; every other patient is still summarized.
"""

import functools
import logging
import typing
from collections import Counter
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field

from stairval.notepad import Notepad

from .aggregator import DEFAULT_HORIZONS, aggregate, parse_horizons
from .codelist import CodeListRegistry
from .errors import ConfigError, InvariantError
from .matcher import ConditionMatcher
from .normalizer import NormalizationReport
from .reconciler import reconcile_all
from .summary import BurdenSummary, Horizon
from .timeline import PatientTimeline

logger = logging.getLogger(__name__)


@dataclass
class PipelineDiagnostics:
    """
    Data-quality counters surfaced for review; none of them fail the run.

    Attributes:
        records_read: Raw records seen by the normalizer.
        records_skipped: Malformed raw records skipped by the normalizer.
        skipped_by_reason: records_skipped broken down by reason.
        out_of_cohort: Raw records of patients outside the cohort.
        event_decades: Normalized events per decade of event date.
        patients_processed: Timelines summarized successfully.
        patients_with_zero_matched_conditions: Summarized patients with no
            condition episode at all.
        failed_patients: Patients whose processing hit an InvariantError.
    """

    records_read: int = 0
    records_skipped: int = 0
    skipped_by_reason: Counter = field(default_factory=Counter)
    out_of_cohort: int = 0
    event_decades: Counter = field(default_factory=Counter)
    patients_processed: int = 0
    patients_with_zero_matched_conditions: int = 0
    failed_patients: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, typing.Any]:
        return {
            "records_read": self.records_read,
            "records_skipped": self.records_skipped,
            "skipped_by_reason": dict(sorted(self.skipped_by_reason.items())),
            "out_of_cohort": self.out_of_cohort,
            "event_decades": {str(k): v for k, v in sorted(self.event_decades.items())},
            "patients_processed": self.patients_processed,
            "patients_with_zero_matched_conditions": self.patients_with_zero_matched_conditions,
            "failed_patients": list(self.failed_patients),
        }


@dataclass
class PipelineResult:
    summaries: list[BurdenSummary]
    diagnostics: PipelineDiagnostics


@dataclass(frozen=True)
class _Outcome:
    patient_id: str
    summary: BurdenSummary | None
    matched_conditions: int
    error: str | None


def process_timeline(
    timeline: PatientTimeline,
    registry: CodeListRegistry,
    horizons: typing.Sequence[Horizon],
) -> tuple[BurdenSummary, int]:
    """Run one patient end to end. Returns the summary and the number of matched conditions."""
    raw_episodes = ConditionMatcher(registry).match(timeline)
    canonical_episodes = reconcile_all(raw_episodes)
    summary = aggregate(timeline, canonical_episodes, horizons)
    return summary, len(canonical_episodes)


def _process_isolated(
    timeline: PatientTimeline,
    registry: CodeListRegistry,
    horizons: typing.Sequence[Horizon],
) -> _Outcome:
    try:
        summary, matched = process_timeline(timeline, registry, horizons)
    except InvariantError as e:
        return _Outcome(timeline.patient_id, None, 0, str(e))
    return _Outcome(timeline.patient_id, summary, matched, None)


class BurdenPipeline:
    """
    Args:
        registry: validated code-list registry.
        horizons: follow-up horizons in whole years (validated, ConfigError if bad).
        workers: processes to spread patients over; 1 runs in-process.
    """

    def __init__(
        self,
        registry: CodeListRegistry,
        horizons: typing.Iterable[typing.Any] = DEFAULT_HORIZONS,
        workers: int = 1,
    ):
        if not isinstance(registry, CodeListRegistry):
            raise ConfigError(f"Expected a CodeListRegistry, got {type(registry).__name__}")
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ConfigError(f"workers must be an integer >= 1, got {workers!r}")
        self.registry = registry
        self.horizons = parse_horizons(horizons)
        self.workers = workers

    def process(self, timeline: PatientTimeline) -> BurdenSummary:
        summary, _ = process_timeline(timeline, self.registry, self.horizons)
        return summary

    def run(
        self,
        timelines: typing.Iterable[PatientTimeline],
        notepad: Notepad | None = None,
        normalization: NormalizationReport | None = None,
    ) -> PipelineResult:
        """
        Summarize every timeline. Summaries come back sorted by patient_id.
        `normalization` carries the normalizer's counters into the diagnostics.
        """
        timelines = list(timelines)
        task = functools.partial(_process_isolated, registry=self.registry, horizons=self.horizons)

        logger.info(f"Summarizing {len(timelines)} patients with {self.workers} worker(s)")
        if self.workers == 1 or len(timelines) < 2:
            outcomes = [task(timeline) for timeline in timelines]
        else:
            chunksize = max(1, len(timelines) // (self.workers * 4))
            with ProcessPoolExecutor(max_workers=self.workers) as executor:
                outcomes = list(executor.map(task, timelines, chunksize=chunksize))

        diagnostics = PipelineDiagnostics()
        if normalization is not None:
            diagnostics.records_read = normalization.records_read
            diagnostics.records_skipped = normalization.records_skipped
            diagnostics.skipped_by_reason = Counter(normalization.skipped_by_reason)
            diagnostics.out_of_cohort = normalization.out_of_cohort
            diagnostics.event_decades = Counter(normalization.decade_counts)

        summaries: list[BurdenSummary] = []
        for outcome in outcomes:
            if outcome.summary is None:
                logger.error(f"Patient {outcome.patient_id!r} not summarized: {outcome.error}")
                if notepad is not None:
                    notepad.add_error(f"Patient {outcome.patient_id!r}: {outcome.error}")
                diagnostics.failed_patients.append(outcome.patient_id)
                continue
            diagnostics.patients_processed += 1
            if outcome.matched_conditions == 0:
                diagnostics.patients_with_zero_matched_conditions += 1
            summaries.append(outcome.summary)

        summaries.sort(key=lambda s: s.patient_id)
        diagnostics.failed_patients.sort()
        logger.info(
            f"Summarized {diagnostics.patients_processed} patients, "
            f"{len(diagnostics.failed_patients)} failed, "
            f"{diagnostics.patients_with_zero_matched_conditions} without any matched condition"
        )
        return PipelineResult(summaries=summaries, diagnostics=diagnostics)
