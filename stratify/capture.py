"""
Capture-history matrix building.

Turns a stratum's capture table (rows = person-periods, columns = sources)
into the aggregated form a sparse multiple-systems estimator consumes: one
row per distinct capture pattern plus its frequency.

Sources that never observe anyone on their own inside the stratum are
pruned first. A source whose every sighting is shared with another list
contributes no singleton information, so the estimator cannot use it for
this stratum.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import pandas as pd

COUNT_COL = "count"


class DataIntegrityError(Exception):
    """Raised when a capture pattern with no observing source appears."""
    pass


class EmptyStratumError(Exception):
    """Raised when a stratum's capture table has no rows."""
    pass


@dataclass
class CaptureMatrix:
    """
    Deduplicated capture patterns for one stratum.

    Attributes:
        sources: Sources surviving pruning, in column order
        patterns: 0/1 matrix (n_patterns x n_sources), pairwise distinct rows
        counts: Frequency of each pattern (n_patterns,)
        dropped: Sources pruned for this stratum
    """

    sources: list[str]
    patterns: np.ndarray
    counts: np.ndarray
    dropped: list[str] = field(default_factory=list)

    @property
    def n_rows(self) -> int:
        """Person-period rows represented (sum of pattern frequencies)."""
        return int(self.counts.sum())

    @property
    def n_patterns(self) -> int:
        return len(self.counts)

    def to_frame(self) -> pd.DataFrame:
        """Wide form: one 0/1 column per source, then the ``count`` column."""
        df = pd.DataFrame(self.patterns, columns=self.sources).astype(int)
        df[COUNT_COL] = self.counts.astype(int)
        return df

    def expand(self) -> pd.DataFrame:
        """Back to one boolean row per person-period (patterns repeated by count)."""
        rows = np.repeat(self.patterns, self.counts, axis=0)
        return pd.DataFrame(rows.astype(bool), columns=self.sources)


def list_counts(table: pd.DataFrame) -> pd.Series:
    """Number of sources observing each row (``nlists``)."""
    return table.astype(int).sum(axis=1)


def singleton_contributions(table: pd.DataFrame) -> pd.Series:
    """
    Count, per source, the rows observed by that source alone.

    Args:
        table: Boolean capture table (rows x sources)

    Returns:
        Series indexed by source name
    """
    indicators = table.astype(int)
    singletons = indicators[list_counts(table) == 1]
    return singletons.sum(axis=0).reindex(table.columns, fill_value=0).astype(int)


def prune_sources(table: pd.DataFrame) -> list[str]:
    """
    Return the sources kept for this stratum, in table column order.

    A source survives when it is the only observing source for at least one
    row. If the stratum has no single-source rows at all the singleton test
    says nothing, and only sources that never observe anyone are dropped.
    """
    singletons = singleton_contributions(table)
    if singletons.sum() == 0:
        observed = table.astype(int).sum(axis=0)
        return [s for s in table.columns if observed[s] > 0]
    return [s for s in table.columns if singletons[s] > 0]


def build_capture_matrix(
    table: pd.DataFrame,
    sources: list[str] | None = None,
) -> CaptureMatrix:
    """
    Build the deduplicated capture matrix for one stratum.

    Args:
        table: Boolean capture table, one row per person-period
        sources: Source columns to consider (default: all columns of ``table``)

    Returns:
        CaptureMatrix with patterns sorted ascending

    Raises:
        EmptyStratumError: If ``table`` has no rows
        DataIntegrityError: If a row has no surviving observing source
    """
    if sources is None:
        sources = list(table.columns)
    missing = [s for s in sources if s not in table.columns]
    if missing:
        raise ValueError(f"Capture table lacks source columns: {missing}")

    if len(table) == 0:
        raise EmptyStratumError("Capture table has no rows")

    indicators = table[sources].fillna(False).astype(bool)
    kept = prune_sources(indicators)
    dropped = [s for s in sources if s not in kept]

    if not kept:
        raise DataIntegrityError(
            f"No source survives pruning for a stratum of {len(indicators)} rows"
        )

    pruned = indicators[kept].astype(int)
    tallies = pruned.groupby(kept, sort=True).size()
    patterns = np.asarray(
        [list(p) if isinstance(p, tuple) else [p] for p in tallies.index],
        dtype=int,
    )
    counts = tallies.to_numpy(dtype=int)

    zero_rows = ~patterns.any(axis=1)
    if zero_rows.any():
        raise DataIntegrityError(
            f"{int(counts[zero_rows].sum())} rows have no observing source "
            f"among {kept} after pruning {dropped}"
        )

    return CaptureMatrix(
        sources=kept,
        patterns=patterns,
        counts=counts,
        dropped=dropped,
    )
