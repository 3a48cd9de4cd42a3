import pathlib
import re

import pandas as pd

# Columns that need renaming → target field names
RENAME_MAP = {
    # code-list columns
    "condition": "condition_name",
    "condition_label": "condition_name",
    "system": "coding_system",
    "vocabulary": "coding_system",
    "min_count": "min_occurrences",
    "count_repeat": "count_repeats",
    "descendants": "match_descendants",
    "lookback": "lookback_years",
    "window_years": "lookback_years",
    "required_condition": "requires",
    # cohort columns
    "diagnosis_date": "index_date",
    "end_of_follow_up": "censor_date",
    "end_date": "censor_date",
}


def normalize_header(name) -> str:
    """Normalize one header the same way normalize_columns does (without renames)."""
    s = str(name).strip()
    s = re.sub(r"\s*\(.*?\)", "", s)
    s = re.sub(r"\s+", "_", s)
    return s.replace(":", "").lower()


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize all headers to snake_case lowercase and apply renames from
    RENAME_MAP (a rename never overwrites a column that is already present).
    """
    df = df.copy()
    df.columns = (
        df.columns.astype(str)
        .str.strip()
        .str.replace(r"\s*\(.*?\)", "", regex=True)  # drop any "(…)"
        .str.replace(r"\s+", "_", regex=True)  # spaces → underscore
        .str.replace(":", "", regex=False)  # drop colons
        .str.lower()
    )
    return df.rename(
        columns={
            orig: target
            for orig, target in RENAME_MAP.items()
            if orig in df.columns and target not in df.columns
        }
    )


def load_table(path: str | pathlib.Path, sheet_name: str | int = 0) -> pd.DataFrame:
    """
    Read a CSV/TSV file or one Excel worksheet into a DataFrame:
      - first row = header
      - every cell read as text; dates and codes are parsed downstream
      - rows with every cell blank are dropped (spreadsheets often carry them)
      - headers normalized (see normalize_columns)
    """
    path = pathlib.Path(path)
    suffix = path.suffix.lower()
    if suffix in {".xlsx", ".xlsm"}:
        df = pd.read_excel(path, sheet_name=sheet_name, header=0, dtype=str, engine="openpyxl")
    elif suffix in {".tsv", ".tab"}:
        df = pd.read_csv(path, sep="\t", dtype=str)
    else:
        df = pd.read_csv(path, dtype=str)
    df = df.dropna(how="all").reset_index(drop=True)
    return normalize_columns(df)
