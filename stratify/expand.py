"""
Person-period expansion.

Explodes each person record into one row per period in which the person was
both eligible and observed, carrying the demographic snapshot, the derived age
category and the per-source observation flags for that period.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from .config import AgeBin, StudyConfig
from .eligibility import counted_mask


def assign_age_category(ages: pd.Series, age_bins: list[AgeBin]) -> pd.Series:
    """
    Map ages onto the configured age partition.

    Args:
        ages: Integer ages
        age_bins: Ordered, contiguous bins (inclusive bounds)

    Returns:
        Series of bin labels aligned to ``ages``

    Raises:
        ValueError: If any age falls outside every bin
    """
    result = np.empty(len(ages), dtype=object)
    values = ages.to_numpy()
    for age_bin in age_bins:
        mask = (values >= age_bin.low) & (values <= age_bin.high)
        result[mask] = age_bin.label

    categories = pd.Series(result, index=ages.index, dtype=object)
    uncovered = categories.isna()
    if uncovered.any():
        raise ValueError(
            f"{uncovered.sum()} person-periods have ages outside the configured "
            f"age bins: {sorted(set(ages[uncovered].tolist()))}"
        )
    return categories


def expand_person_periods(records: pd.DataFrame, config: StudyConfig) -> pd.DataFrame:
    """
    Build the person-period table.

    Observations in a period where the person was not eligible are dropped
    silently; that is expected filtering.

    Args:
        records: Observation table (usually the output of ``filter_eligible``)
        config: Study configuration

    Returns:
        DataFrame with columns ``person_id``, demographics, ``birth_date``,
        ``period``, ``age``, ``age_category`` and one boolean column per
        source. At most one row per (person, period).
    """
    counted = counted_mask(records, config)
    snapshot_cols = [config.person_id_col, *config.demographics, config.birth_date_col]

    frames = []
    for period in config.periods:
        rows = records.loc[counted[period]]
        frame = rows[snapshot_cols].copy()
        frame["period"] = period
        for source in config.sources:
            column = config.source_column(source, period)
            frame[source] = rows[column].fillna(False).astype(bool)
        frames.append(frame)

    person_periods = pd.concat(frames, ignore_index=True)
    person_periods["period"] = person_periods["period"].astype(int)

    birth_years = pd.to_datetime(person_periods[config.birth_date_col]).dt.year
    person_periods["age"] = (person_periods["period"] - birth_years).astype(int)
    person_periods["age_category"] = assign_age_category(
        person_periods["age"], config.age_bins
    )

    columns = [
        *snapshot_cols, "period", "age", "age_category", *config.sources,
    ]
    return person_periods[columns]
