"""
Per-stratum estimation.

Builds each stratum's capture matrix, asks the estimator whether it is
identifiable, and if so estimates the population. Strata are independent:
a failure in one is recorded on its summary row and never stops the others.
"""

from __future__ import annotations

import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import pandas as pd
from tqdm import tqdm

from .capture import DataIntegrityError, EmptyStratumError, build_capture_matrix
from .config import StudyConfig
from .estimators.base import (
    IDENTIFIABLE,
    Estimator,
    EstimatorFailure,
    NonEstimable,
    validate_estimate,
    validate_identifiability,
)
from .strata import STRATUM_ID_COL


@dataclass
class StratumSummary:
    """Estimation outcome for one stratum."""

    stratum_id: int
    key: dict[str, Any]
    n_kids: int
    n_rows: int
    sources: list[str] = field(default_factory=list)
    identifiability: Optional[int] = None
    point: Optional[float] = None
    low: Optional[float] = None
    high: Optional[float] = None
    est_unlisted: Optional[int] = None
    unlisted_to_listed: Optional[float] = None
    error: Optional[str] = None

    @property
    def has_estimate(self) -> bool:
        return self.point is not None

    def set_estimate(self, point: float, low: float, high: float) -> None:
        """Record an estimate and derive the hidden population figures."""
        self.point = point
        self.low = low
        self.high = high
        self.est_unlisted = int(round(point)) - self.n_kids
        self.unlisted_to_listed = round(self.est_unlisted / self.n_kids, 1)

    def to_record(self) -> dict[str, Any]:
        return {
            STRATUM_ID_COL: self.stratum_id,
            **self.key,
            "n_kids": self.n_kids,
            "n_rows": self.n_rows,
            "sources": ",".join(self.sources),
            "identifiability": self.identifiability,
            "point": self.point,
            "low": self.low,
            "high": self.high,
            "est_unlisted": self.est_unlisted,
            "unlisted_to_listed": self.unlisted_to_listed,
            "error": self.error,
        }


REPORT_COLUMNS = [
    "n_kids",
    "n_rows",
    "sources",
    "identifiability",
    "point",
    "low",
    "high",
    "est_unlisted",
    "unlisted_to_listed",
    "error",
]


@dataclass
class StratumOrchestrator:
    """
    Runs the estimator over every stratum.

    Attributes:
        config: Study configuration (sources, quantiles, stratum keys)
        estimator: Identifiability check and population estimate provider
        max_workers: Strata processed concurrently (1 = sequential)
        verbose: Show a progress bar over strata
    """

    config: StudyConfig
    estimator: Estimator
    max_workers: int = 1
    verbose: bool = True

    def summarize(self, stratum: dict[str, Any], table: pd.DataFrame) -> StratumSummary:
        """
        Estimate a single stratum.

        Args:
            stratum: Stratum row (id, keys, n_kids, n_rows) from ``assign_strata``
            table: The stratum's capture table

        Returns:
            StratumSummary; estimate fields stay None when the stratum is not
            identifiable or anything failed
        """
        stratum_id = int(stratum[STRATUM_ID_COL])
        summary = StratumSummary(
            stratum_id=stratum_id,
            key={k: stratum[k] for k in self.config.stratum_keys},
            n_kids=int(stratum["n_kids"]),
            n_rows=int(stratum["n_rows"]),
        )

        try:
            matrix = build_capture_matrix(table, self.config.sources)
        except (DataIntegrityError, EmptyStratumError) as e:
            return self._fail(summary, e)
        summary.sources = matrix.sources

        try:
            code = validate_identifiability(self.estimator.check_identifiability(matrix))
            summary.identifiability = code
            if code != IDENTIFIABLE:
                return summary

            estimate = validate_estimate(
                self.estimator.estimate_population(matrix, self.config.quantiles)
            )
        except NonEstimable as e:
            summary.identifiability = e.code
            return summary
        except EstimatorFailure as e:
            return self._fail(summary, e)
        except Exception as e:
            return self._fail(summary, EstimatorFailure(f"{type(e).__name__}: {e}"))

        summary.set_estimate(estimate.point, estimate.low, estimate.high)
        return summary

    def run(
        self,
        strata: pd.DataFrame,
        tables: Iterable[tuple[int, pd.DataFrame]],
    ) -> pd.DataFrame:
        """
        Estimate every stratum and merge the results.

        Args:
            strata: One row per stratum (from ``assign_strata``)
            tables: (stratum_id, capture table) pairs

        Returns:
            Report DataFrame, one row per stratum, sorted by stratum id
        """
        tables_by_id = dict(tables)
        stratum_rows = strata.to_dict("records")
        empty = pd.DataFrame(columns=self.config.sources, dtype=bool)

        tasks = [
            (row, tables_by_id.get(int(row[STRATUM_ID_COL]), empty))
            for row in stratum_rows
        ]

        summaries: dict[int, StratumSummary] = {}
        with tqdm(total=len(tasks), desc="Strata", disable=not self.verbose) as pbar:
            if self.max_workers <= 1:
                for row, table in tasks:
                    summary = self.summarize(row, table)
                    summaries[summary.stratum_id] = summary
                    pbar.update(1)
            else:
                with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                    futures = [
                        executor.submit(self.summarize, row, table)
                        for row, table in tasks
                    ]
                    for future in as_completed(futures):
                        summary = future.result()
                        summaries[summary.stratum_id] = summary
                        pbar.update(1)

        ordered = [summaries[k] for k in sorted(summaries)]
        return summaries_to_frame(ordered, self.config.stratum_keys)

    def _fail(self, summary: StratumSummary, error: Exception) -> StratumSummary:
        summary.error = f"{type(error).__name__}: {error}"
        warnings.warn(f"Stratum {summary.stratum_id} not estimated: {summary.error}")
        return summary


def summaries_to_frame(summaries: list[StratumSummary], key_columns: list[str]) -> pd.DataFrame:
    """Build the report frame with nullable integer columns for missing estimates."""
    columns = [STRATUM_ID_COL, *key_columns, *REPORT_COLUMNS]
    report = pd.DataFrame([s.to_record() for s in summaries], columns=columns)

    report[STRATUM_ID_COL] = report[STRATUM_ID_COL].astype(int)
    for col in ("identifiability", "est_unlisted"):
        report[col] = report[col].astype("Int64")
    for col in ("point", "low", "high", "unlisted_to_listed"):
        report[col] = report[col].astype(float)

    return report
