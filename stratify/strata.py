"""
Stratum assignment and per-stratum capture tables.

Strata are the distinct (demographics, age category, period) combinations of
the person-period table. Each stratum is analyzed independently, so this
module hands out (stratum_id, table) pairs rather than one nested frame.
"""

from __future__ import annotations

from typing import Iterator

import pandas as pd

from .config import StudyConfig

STRATUM_ID_COL = "stratum_id"


class EmptyCohort(Exception):
    """Raised when no person-period survives eligibility filtering."""
    pass


def assign_strata(
    person_periods: pd.DataFrame,
    config: StudyConfig,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Partition person-period rows into strata.

    Ids are dense (1..n) and follow the sorted order of stratum keys. They
    carry no meaning beyond uniqueness within a run.

    Args:
        person_periods: Output of ``expand_person_periods``
        config: Study configuration

    Returns:
        Tuple of (person_periods with a ``stratum_id`` column,
        one row per stratum with its keys, ``n_kids`` and ``n_rows``)

    Raises:
        EmptyCohort: If ``person_periods`` is empty
    """
    if person_periods.empty:
        raise EmptyCohort(
            "No person-periods are both eligible and observed; nothing to estimate"
        )

    keys = config.stratum_keys
    missing = [k for k in keys if k not in person_periods.columns]
    if missing:
        raise ValueError(f"Missing stratum key columns: {missing}")

    grouped = person_periods.groupby(keys, sort=True, dropna=False)
    assigned = person_periods.assign(**{STRATUM_ID_COL: grouped.ngroup() + 1})

    person_col = config.person_id_col
    strata = (
        assigned.groupby(STRATUM_ID_COL, sort=True)
        .agg(
            **{k: (k, "first") for k in keys},
            n_kids=(person_col, "nunique"),
            n_rows=(person_col, "size"),
        )
        .reset_index()
    )

    return assigned, strata


def stratum_table(rows: pd.DataFrame, config: StudyConfig) -> pd.DataFrame:
    """
    Build the capture table for one stratum.

    One row per (person, period) and one boolean column per configured
    source. A source the rows never mention is all False: absence means
    "not observed", never "unknown".

    Args:
        rows: Person-period rows of a single stratum
        config: Study configuration

    Returns:
        Boolean DataFrame indexed by (person_id, period), columns in
        configured source order
    """
    index_cols = [config.person_id_col, "period"]
    table = rows.reindex(columns=[*index_cols, *config.sources])
    table[config.sources] = table[config.sources].fillna(False).astype(bool)

    # Collapse duplicate (person, period) pairs into one row.
    table = table.groupby(index_cols, sort=True)[config.sources].any()
    return table.astype(bool)


def build_stratum_tables(
    assigned: pd.DataFrame,
    config: StudyConfig,
) -> Iterator[tuple[int, pd.DataFrame]]:
    """
    Yield (stratum_id, capture table) pairs in ascending id order.

    Args:
        assigned: Person-periods carrying ``stratum_id`` (from ``assign_strata``)
        config: Study configuration
    """
    for stratum_id, rows in assigned.groupby(STRATUM_ID_COL, sort=True):
        yield int(stratum_id), stratum_table(rows, config)
