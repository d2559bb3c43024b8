"""
Observation table loading.

Reads the linked, person-level observation table (one row per person, one
boolean column per source and period) and normalizes its types.
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from .config import StudyConfig

SUPPORTED_SUFFIXES = {".csv", ".parquet"}

# Accepted flag values besides null; 1 and 0 compare equal to True and False
FLAG_VALUES = {True, False}


def coerce_flags(values: pd.Series, column: str) -> pd.Series:
    """
    Convert a source flag column to bool, reading nulls as False.

    Raises:
        ValueError: If any non-null value is not a boolean or 0/1
    """
    present = values.dropna()
    valid = present.map(lambda v: v in FLAG_VALUES).astype(bool)
    bad = present[~valid]
    if len(bad):
        raise ValueError(
            f"Column {column} has non-boolean values: {bad.unique()[:5].tolist()}"
        )
    return values.where(values.notna(), False).astype(bool)


def prepare_observations(df: pd.DataFrame, config: StudyConfig) -> pd.DataFrame:
    """
    Validate and normalize an observation table.

    Birth dates are parsed to timestamps and source flags coerced to bool,
    with nulls read as "not observed". Flags must be boolean or 0/1.

    Args:
        df: Raw observation table
        config: Study configuration naming the required columns

    Returns:
        Normalized copy of ``df``

    Raises:
        ValueError: If required columns are missing, person ids repeat, or
            birth dates are missing or unparsable, or a flag is not boolean
    """
    config.check_columns(df)

    duplicated = df[config.person_id_col].duplicated()
    if duplicated.any():
        examples = df.loc[duplicated, config.person_id_col].head(5).tolist()
        raise ValueError(
            f"Person ids must be unique; found {duplicated.sum()} repeats "
            f"(e.g. {examples})"
        )

    df = df.copy()
    df[config.birth_date_col] = pd.to_datetime(
        df[config.birth_date_col], errors="coerce"
    )
    missing_birth = df[config.birth_date_col].isna()
    if missing_birth.any():
        raise ValueError(
            f"{missing_birth.sum()} records have a missing or invalid "
            f"{config.birth_date_col}"
        )

    for period in config.periods:
        for col in config.period_columns(period):
            df[col] = coerce_flags(df[col], col)

    return df


def load_observations(path: Path | str, config: StudyConfig) -> pd.DataFrame:
    """
    Load the observation table from CSV or parquet.

    Args:
        path: Path to a ``.csv`` or ``.parquet`` file
        config: Study configuration

    Returns:
        Normalized observation DataFrame

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the format is unsupported or the table is invalid
    """
    path = Path(path)
    if path.suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(
            f"Unsupported file type: {path.suffix}. "
            f"Supported: {sorted(SUPPORTED_SUFFIXES)}"
        )
    if not path.exists():
        raise FileNotFoundError(f"Observation file not found: {path}")

    if path.suffix == ".parquet":
        df = pd.read_parquet(path)
    else:
        df = pd.read_csv(path)

    return prepare_observations(df, config)
