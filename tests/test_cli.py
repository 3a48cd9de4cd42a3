"""
End-to-end CLI tests on small CSV fixtures written to tmp_path.
"""

import json

import pandas as pd
import pytest
from click.testing import CliRunner

from ltcburden.__main__ import _prepare_output_dir, _report_issues, main
from stairval.notepad import create_notepad


@pytest.fixture
def codelists_csv(tmp_path):
    path = tmp_path / "codelists.csv"
    pd.DataFrame(
        {
            "Condition": ["Diabetes", "Diabetes", "Hypertension", "Lymphoma"],
            "System": ["ICD10", "READ2", "ICD10", "ICD10"],
            "Code": ["E11", "C10..", "I10", "C85"],
            "Min occurrences": ["2", "", "", ""],
            "Match descendants": ["yes", "", "", "yes"],
        }
    ).to_csv(path, index=False)
    return str(path)


@pytest.fixture
def cohort_csv(tmp_path):
    path = tmp_path / "cohort.csv"
    pd.DataFrame(
        {
            "patient_id": ["P1", "P2", "P3"],
            "index_date": ["2010-01-01", "2015-01-01", ""],
            "censor_date": ["2021-06-30", "2017-01-01", "2022-01-01"],
        }
    ).to_csv(path, index=False)
    return str(path)


@pytest.fixture
def events_csv(tmp_path):
    path = tmp_path / "events.csv"
    pd.DataFrame(
        {
            "patid": ["P1", "P1", "P1", "P2", "P2", "P3", "P3", "P9"],
            "system": ["ICD10", "ICD10", "READ2", "ICD10", "ICD10", "ICD10", "ICD10", "ICD10"],
            "code": ["I10", "E11.9", "C10..00", "I10", "I10", "C85.1", "I10", "I10"],
            "event_date": [
                "2008-02-01", "2012-01-01", "2012-02-01", "2016-01-01", "not a date",
                "2013-05-01", "2014-05-01", "2019-01-01",
            ],
        }
    ).to_csv(path, index=False)
    return str(path)


def test_check_codelists_lists_conditions(codelists_csv):
    result = CliRunner().invoke(main, ["check-codelists", "-l", codelists_csv])
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].startswith("CONDITION")
    assert any(line.startswith("Diabetes") for line in lines)
    assert "3 conditions OK" in result.output


def test_check_codelists_rejects_conflicts(tmp_path):
    path = tmp_path / "bad.csv"
    pd.DataFrame(
        {
            "condition_name": ["Diabetes", "Diabetes"],
            "coding_system": ["ICD10", "ICD10"],
            "code": ["E11", "E10"],
            "min_occurrences": ["1", "2"],
        }
    ).to_csv(path, index=False)
    result = CliRunner().invoke(main, ["check-codelists", "-l", str(path)])
    assert result.exit_code == 1
    assert "conflicting" in result.output


def test_summarize_writes_outputs(tmp_path, events_csv, cohort_csv, codelists_csv):
    out_root = tmp_path / "out"
    result = CliRunner().invoke(
        main,
        [
            "summarize",
            "-e", events_csv,
            "-c", cohort_csv,
            "-l", codelists_csv,
            "-y", "1", "-y", "5", "-y", "10",
            "--index-condition", "Lymphoma",
            "-o", str(out_root),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Records skipped: 1" in result.output
    assert "Records outside the cohort: 1" in result.output
    assert "Wrote 3 patient summaries" in result.output

    [output_dir] = list((out_root / "burden_summaries").iterdir())
    payload = json.loads((output_dir / "summaries.json").read_text())
    assert payload["horizons"] == ["1y", "5y", "10y"]
    patients = {p["patient_id"]: p for p in payload["patients"]}

    # P1: hypertension before index, diabetes (two codes) two years in
    assert [c["condition_name"] for c in patients["P1"]["pre_existing"]] == ["Hypertension"]
    assert patients["P1"]["cumulative_condition_count"] == {"1y": 0, "5y": 1, "10y": 1}
    # P2: censored after two years
    assert patients["P2"]["cumulative_condition_count"] == {"1y": 1, "5y": None, "10y": None}
    # P3: index date derived from the first lymphoma code
    assert patients["P3"]["index_date"] == "2013-05-01"
    # the index condition itself is not counted as burden
    assert [o["condition_name"] for o in patients["P3"]["incident"]] == ["Hypertension"]

    burden = pd.read_csv(output_dir / "burden.csv")
    assert list(burden["patient_id"]) == ["P1", "P2", "P3"]
    prevalence = pd.read_csv(output_dir / "prevalence.csv")
    assert set(prevalence["timepoint"]) == {"index", "1y", "5y", "10y"}


def test_summarize_rejects_bad_horizon(events_csv, cohort_csv, codelists_csv):
    result = CliRunner().invoke(
        main, ["summarize", "-e", events_csv, "-c", cohort_csv, "-l", codelists_csv, "-y", "0"]
    )
    assert result.exit_code == 1
    assert "horizon" in result.output.lower()


def test_prepare_output_dir_creates_timestamped_folder(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    out = _prepare_output_dir()
    assert out.exists() and out.is_dir()
    assert out.parent.name == "burden_summaries"


def test_report_issues_outputs_both_blocks(capsys):
    n = create_notepad("report")
    n.add_warning("warn 1")
    n.add_error("err 1")

    _report_issues(n)
    out = capsys.readouterr().out
    assert "Warnings found in pipeline" in out
    assert "warn 1" in out
    assert "Errors found in pipeline" in out
    assert "err 1" in out
