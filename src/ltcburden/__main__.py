"""
Command-line interface for the ltcburden toolkit.

Loads the event extract, cohort table and code lists with pandas, runs the
burden pipeline and writes per-patient summaries plus a cohort prevalence
table into a timestamped output directory.
"""

import json
import logging
import pathlib
import sys
import typing
from datetime import datetime

import click
from stairval.notepad import Notepad, create_notepad

from .aggregator import DEFAULT_HORIZONS, parse_horizons
from .codelist import CodeListRegistry
from .coding import CodingSystem
from .errors import ConfigError
from .loader import load_table
from .normalizer import EventNormalizer
from .pipeline import BurdenPipeline, PipelineDiagnostics
from .prevalence import prevalence_table
from .summary import summaries_to_frame
from .timeline import build_timelines, cohort_from_frame, earliest_condition_dates

# Longer issue lists are truncated on the terminal
MAX_REPORTED_ISSUES = 25


@click.group()
def main():
    """ltcburden: long-term condition burden after a lymphoma diagnosis."""
    pass


@main.command(name="check-codelists")
@click.option(
    "-l",
    "--codelists-path",
    "codelists_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="code-list table (CSV, TSV or Excel), one row per code",
)
def check_codelists(codelists_file: str):
    """
    Build the code-list registry and print one line per condition.
    Exits with status 1 if the code lists are malformed or contradictory.
    """
    registry = _load_registry(codelists_file)
    click.echo(
        f"{'CONDITION':40} {'CODES':>6} {'EXCL':>5} {'MIN':>4} {'WINDOW':>6}  REPEATS  DESCENDANTS  REQUIRES"
    )
    for name in registry.condition_names:
        definition = registry.definition(name)
        window = f"{definition.lookback_years}y" if definition.lookback_years else "-"
        requires = definition.requires or "-"
        if definition.supporting:
            requires += " (supporting)"
        click.echo(
            f"{name[:40]:40} {len(definition.codes):>6} {len(definition.excluded_codes):>5} "
            f"{definition.min_occurrences:>4} {window:>6}  {'yes' if definition.count_repeats else 'no':7}  "
            f"{'yes' if definition.match_descendants else 'no':11}  {requires}"
        )
    click.echo(f"{len(registry)} conditions OK")


@main.command(name="summarize")
@click.option(
    "-e",
    "--events-path",
    "events_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="coded clinical event extract (CSV, TSV or Excel)",
)
@click.option(
    "-c",
    "--cohort-path",
    "cohort_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="cohort table with patient_id, index_date and censor_date",
)
@click.option(
    "-l",
    "--codelists-path",
    "codelists_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="code-list table (CSV, TSV or Excel), one row per code",
)
@click.option(
    "-y",
    "--horizon",
    "horizons",
    multiple=True,
    type=int,
    default=DEFAULT_HORIZONS,
    show_default=True,
    envvar="LTCBURDEN_HORIZONS",
    help="follow-up horizon in whole years (repeatable)",
)
@click.option(
    "--index-condition",
    default=None,
    type=str,
    help="derive missing index dates from the earliest event of this code list",
)
@click.option(
    "--default-coding-system",
    default=None,
    type=click.Choice([system.value for system in CodingSystem], case_sensitive=False),
    help="coding system for events whose extract has no coding-system column",
)
@click.option(
    "-w",
    "--workers",
    default=1,
    type=click.IntRange(min=1),
    show_default=True,
    envvar="LTCBURDEN_WORKERS",
    help="worker processes used to summarize patients",
)
@click.option(
    "-o",
    "--output-dir",
    "output_root",
    default=None,
    type=click.Path(file_okay=False),
    help="where to create the timestamped output folder (default: current directory)",
)
@click.option("--verbose-logging", is_flag=True, help="Also emit debug logs to stderr")
@click.option(
    "--log-file-path",
    type=click.Path(dir_okay=False, writable=True),
    help="Append timestamped logs to this file",
)
def summarize(
    events_file: str,
    cohort_file: str,
    codelists_file: str,
    horizons: tuple[int, ...],
    index_condition: typing.Optional[str],
    default_coding_system: typing.Optional[str],
    workers: int,
    output_root: typing.Optional[str],
    verbose_logging: bool,
    log_file_path: typing.Optional[str],
):
    """
    Summarize comorbidity burden per patient:
      - normalize the event extract (malformed rows are skipped and counted)
      - match events against the code lists and reconcile episodes
      - count incident conditions at each horizon, censoring-aware
    """
    _configure_logging(verbose_logging, log_file_path)

    # 1) Configuration: fail fast before touching any patient
    registry = _load_registry(codelists_file)
    try:
        parsed_horizons = parse_horizons(horizons)
        cohort = cohort_from_frame(load_table(cohort_file))
        if index_condition is not None and index_condition not in registry:
            raise ConfigError(f"Unknown index condition: {index_condition!r}")
        # the index condition is not part of the burden
        burden_registry = registry.without(index_condition) if index_condition else registry
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    # 2) Normalize events
    notepad = create_notepad("ltcburden")
    normalizer = EventNormalizer(
        cohort=cohort.keys(),
        default_coding_system=CodingSystem(default_coding_system.upper()) if default_coding_system else None,
    )
    events, normalization = normalizer.normalize_frame(load_table(events_file), notepad)

    # 3) Anchor events to each patient's follow-up
    derived_index_dates = (
        earliest_condition_dates(events, registry, index_condition) if index_condition else None
    )
    timelines = build_timelines(events, cohort, notepad, derived_index_dates)

    # 4) Match, reconcile, aggregate
    pipeline = BurdenPipeline(burden_registry, parsed_horizons, workers=workers)
    result = pipeline.run(timelines, notepad, normalization)

    # 5) Report issues and write outputs
    _report_issues(notepad)
    output_dir = _prepare_output_dir(output_root)
    _write_outputs(result.summaries, result.diagnostics, parsed_horizons, burden_registry, output_dir)
    _print_diagnostics(result.diagnostics)
    click.echo(f"Wrote {len(result.summaries)} patient summaries to {output_dir}")


def _configure_logging(verbose_logging: bool, log_file_path: typing.Optional[str]) -> None:
    handlers: list[logging.Handler] = []
    if log_file_path:
        handlers.append(logging.FileHandler(log_file_path, mode="a", encoding="utf-8"))
    if verbose_logging:
        handlers.append(logging.StreamHandler(sys.stderr))
    if handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose_logging else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
            force=True,
        )


def _load_registry(codelists_file: str) -> CodeListRegistry:
    try:
        return CodeListRegistry.from_frame(load_table(codelists_file))
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _report_issues(notepad: Notepad) -> None:
    # if there were errors, show them
    if notepad.has_errors(include_subsections=True):
        click.echo("Errors found in pipeline:")
        _echo_capped(list(notepad.errors()))
    # show any warnings but keep going
    if notepad.has_warnings(include_subsections=True):
        click.echo("Warnings found in pipeline:")
        _echo_capped(list(notepad.warnings()))


def _echo_capped(issues: list) -> None:
    for issue in issues[:MAX_REPORTED_ISSUES]:
        click.echo(f"- {getattr(issue, 'message', issue)}")
    if len(issues) > MAX_REPORTED_ISSUES:
        click.echo(f"  … and {len(issues) - MAX_REPORTED_ISSUES} more")


def _prepare_output_dir(output_root: typing.Optional[str] = None) -> pathlib.Path:
    # use YYYY-MM-DD_HH-MM-SS for human-readable timestamps
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    root = pathlib.Path(output_root) if output_root else pathlib.Path.cwd()
    output_dir = root / "burden_summaries" / timestamp
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def _write_outputs(summaries, diagnostics: PipelineDiagnostics, horizons, registry: CodeListRegistry,
                   output_dir: pathlib.Path) -> None:
    with open(output_dir / "summaries.json", "w", encoding="utf-8") as out_f:
        json.dump(
            {
                "horizons": [horizon.label for horizon in horizons],
                "diagnostics": diagnostics.to_dict(),
                "patients": [summary.to_dict() for summary in summaries],
            },
            out_f,
            indent=2,
        )
    summaries_to_frame(summaries).to_csv(output_dir / "burden.csv", index=False)
    prevalence_table(summaries, horizons, registry.reported_condition_names).to_csv(
        output_dir / "prevalence.csv", index=False
    )


def _print_diagnostics(diagnostics: PipelineDiagnostics) -> None:
    click.echo(f"Records read: {diagnostics.records_read}")
    click.echo(f"Records skipped: {diagnostics.records_skipped}")
    for reason, count in sorted(diagnostics.skipped_by_reason.items()):
        click.echo(f"  {reason}: {count}")
    click.echo(f"Records outside the cohort: {diagnostics.out_of_cohort}")
    click.echo(f"Patients summarized: {diagnostics.patients_processed}")
    click.echo(f"Patients with zero matched conditions: {diagnostics.patients_with_zero_matched_conditions}")
    click.echo(f"Patients failed: {len(diagnostics.failed_patients)}")


if __name__ == "__main__":
    main()
