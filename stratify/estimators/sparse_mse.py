"""
Adapter for the R ``SparseMSE`` package.

Runs ``checkident`` and ``estimatepopulation.0`` through ``Rscript``,
passing the capture matrix as a temporary CSV (source columns then the
count column, the layout SparseMSE expects) and reading one result line
back from stdout.

Requires R with SparseMSE installed:
    Rscript -e 'install.packages("SparseMSE")'
"""

from __future__ import annotations

import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ..capture import CaptureMatrix
from .base import (
    IDENTIFIABLE,
    EstimatorFailure,
    NonEstimable,
    PopulationEstimate,
    validate_estimate,
    validate_identifiability,
)

CHECK_SCRIPT = """
args <- commandArgs(trailingOnly = TRUE)
suppressPackageStartupMessages(library(SparseMSE))
zdat <- read.csv(args[1])
ierr <- checkident(zdat)
cat("IDENT", as.integer(ierr), "\\n")
"""

ESTIMATE_SCRIPT = """
args <- commandArgs(trailingOnly = TRUE)
suppressPackageStartupMessages(library(SparseMSE))
zdat <- read.csv(args[1])
method <- args[2]
quantiles <- as.numeric(args[3:length(args)])
ierr <- checkident(zdat)
if (ierr != 0) {
  cat("IDENT", as.integer(ierr), "\\n")
} else {
  res <- estimatepopulation.0(zdat, method = method, quantiles = quantiles)
  cat("ESTIMATE", as.numeric(res$estimate), "\\n")
}
"""


@dataclass
class SparseMSEEstimator:
    """
    Estimator backed by SparseMSE in an ``Rscript`` subprocess.

    Attributes:
        rscript: Rscript executable
        method: SparseMSE model search method
        timeout: Seconds allowed per R call
    """

    rscript: str = "Rscript"
    method: str = "stepwise"
    timeout: float = 600.0

    @classmethod
    def from_env(cls) -> "SparseMSEEstimator":
        """
        Load settings from environment variables.

        Optional:
            MSE_RSCRIPT: Path to the Rscript executable
            MSE_METHOD: SparseMSE search method (default: stepwise)
            MSE_TIMEOUT: Seconds allowed per stratum call

        Raises:
            ValueError: If MSE_TIMEOUT is not a positive number
        """
        kwargs = {}
        if os.environ.get("MSE_RSCRIPT"):
            kwargs["rscript"] = os.environ["MSE_RSCRIPT"]
        if os.environ.get("MSE_METHOD"):
            kwargs["method"] = os.environ["MSE_METHOD"]
        if os.environ.get("MSE_TIMEOUT"):
            try:
                timeout = float(os.environ["MSE_TIMEOUT"])
            except ValueError:
                raise ValueError(
                    f"MSE_TIMEOUT must be a number, got {os.environ['MSE_TIMEOUT']!r}"
                )
            if timeout <= 0:
                raise ValueError("MSE_TIMEOUT must be positive")
            kwargs["timeout"] = timeout
        return cls(**kwargs)

    def check_identifiability(self, matrix: CaptureMatrix) -> int:
        tag, values = self._run(CHECK_SCRIPT, matrix)
        if tag != "IDENT" or len(values) != 1:
            raise EstimatorFailure(f"Unexpected checkident output: {tag} {values}")
        return validate_identifiability(_to_number(values[0], int))

    def estimate_population(
        self,
        matrix: CaptureMatrix,
        quantiles: Sequence[float] = (0.025, 0.975),
    ) -> PopulationEstimate:
        """
        Estimate total population size.

        Raises:
            NonEstimable: If SparseMSE reports the matrix is not identifiable
            EstimatorFailure: If R fails or its output cannot be parsed
        """
        tag, values = self._run(
            ESTIMATE_SCRIPT, matrix, self.method, *(str(q) for q in quantiles)
        )

        if tag == "IDENT":
            if len(values) != 1:
                raise EstimatorFailure(f"Unexpected checkident output: {tag} {values}")
            code = validate_identifiability(_to_number(values[0], int))
            if code == IDENTIFIABLE:
                raise EstimatorFailure("SparseMSE skipped estimation of an identifiable matrix")
            raise NonEstimable(code)

        if tag != "ESTIMATE" or len(values) != 3:
            raise EstimatorFailure(
                f"Expected point and {len(quantiles)} quantiles, got: {tag} {values}"
            )
        point, low, high = (_to_number(v, float) for v in values)
        return validate_estimate(PopulationEstimate(point=point, low=low, high=high))

    def _run(self, script: str, matrix: CaptureMatrix, *args: str) -> tuple[str, list[str]]:
        """Run an R script on the matrix and return the last output line, split."""
        with tempfile.TemporaryDirectory() as tmpdir:
            csv_path = Path(tmpdir) / "capture_matrix.csv"
            matrix.to_frame().to_csv(csv_path, index=False)

            try:
                result = subprocess.run(
                    [self.rscript, "-e", script, str(csv_path), *args],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except FileNotFoundError:
                raise EstimatorFailure(f"Rscript not found: {self.rscript}")
            except subprocess.TimeoutExpired:
                raise EstimatorFailure(f"SparseMSE timed out after {self.timeout}s")

        if result.returncode != 0:
            raise EstimatorFailure(
                f"SparseMSE exited with {result.returncode}: {result.stderr.strip()}"
            )

        lines = [line for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            raise EstimatorFailure("SparseMSE produced no output")

        tag, *values = lines[-1].split()
        return tag, values


def _to_number(value: str, kind):
    try:
        return kind(value)
    except ValueError:
        raise EstimatorFailure(f"Non-numeric SparseMSE output: {value!r}")
