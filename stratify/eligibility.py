"""
Per-period eligibility and observation flags.

A person counts in a period only when they were eligible that period (birth
date inside the period's window) and at least one source observed them.
"""

import pandas as pd

from .config import StudyConfig


def eligibility_flags(observations: pd.DataFrame, config: StudyConfig) -> pd.DataFrame:
    """
    Compute eligibility and observation flags for every configured period.

    Args:
        observations: Observation table (see ``prepare_observations``)
        config: Study configuration

    Returns:
        DataFrame aligned to ``observations.index`` with boolean columns
        ``eligible_<period>`` and ``observed_<period>``
    """
    config.check_columns(observations)
    birth_dates = observations[config.birth_date_col]

    flags = {}
    for window in config.windows:
        period = window.period
        flags[f"eligible_{period}"] = window.contains(birth_dates)
        flags[f"observed_{period}"] = (
            observations[config.period_columns(period)].fillna(False).astype(bool).any(axis=1)
        )

    return pd.DataFrame(flags, index=observations.index)


def counted_mask(observations: pd.DataFrame, config: StudyConfig) -> pd.DataFrame:
    """Return per-period masks of rows both eligible and observed, one column per period."""
    flags = eligibility_flags(observations, config)
    return pd.DataFrame(
        {
            period: flags[f"eligible_{period}"] & flags[f"observed_{period}"]
            for period in config.periods
        },
        index=observations.index,
    )


def filter_eligible(observations: pd.DataFrame, config: StudyConfig) -> pd.DataFrame:
    """
    Keep records eligible and observed in at least one period.

    Records never counted in any period are discarded. The input is not
    modified.

    Args:
        observations: Observation table
        config: Study configuration

    Returns:
        Copy of the surviving rows
    """
    keep = counted_mask(observations, config).any(axis=1)
    return observations[keep].copy()
