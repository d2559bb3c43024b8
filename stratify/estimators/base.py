"""
Estimator contract.

The estimator is an external service: it decides whether a capture matrix
supports a consistent population estimate, and if so produces a point
estimate with an interval. Nothing here fits a model.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol, Sequence

from ..capture import CaptureMatrix

# Identifiability codes returned by check_identifiability
IDENTIFIABLE = 0
MLE_MISSING = 1
NOT_IDENTIFIABLE = 2
MLE_MISSING_AND_NOT_IDENTIFIABLE = 3
IDENTIFIABILITY_CODES = {
    IDENTIFIABLE,
    MLE_MISSING,
    NOT_IDENTIFIABLE,
    MLE_MISSING_AND_NOT_IDENTIFIABLE,
}


class NonEstimable(Exception):
    """Raised when an estimate is requested for a non-identifiable matrix."""

    def __init__(self, code: int, message: str | None = None):
        self.code = code
        super().__init__(message or f"Capture matrix not estimable (identifiability={code})")


class EstimatorFailure(Exception):
    """Raised when the estimator errors or returns malformed output."""
    pass


@dataclass
class PopulationEstimate:
    """Estimated total population (listed plus unlisted) with interval bounds."""

    point: float
    low: float
    high: float


class Estimator(Protocol):
    """Anything that can judge and estimate a capture matrix."""

    def check_identifiability(self, matrix: CaptureMatrix) -> int:
        ...

    def estimate_population(
        self,
        matrix: CaptureMatrix,
        quantiles: Sequence[float],
    ) -> PopulationEstimate:
        ...


def validate_identifiability(code) -> int:
    """
    Coerce an estimator's identifiability answer to a known code.

    Raises:
        EstimatorFailure: If the answer is not one of 0, 1, 2, 3
    """
    try:
        value = int(code)
    except (TypeError, ValueError):
        raise EstimatorFailure(f"Malformed identifiability code: {code!r}")
    if value != code or value not in IDENTIFIABILITY_CODES:
        raise EstimatorFailure(f"Unknown identifiability code: {code!r}")
    return value


def validate_estimate(estimate) -> PopulationEstimate:
    """
    Check an estimate is finite and ordered low <= point <= high.

    Raises:
        EstimatorFailure: If the estimate is malformed
    """
    if not isinstance(estimate, PopulationEstimate):
        raise EstimatorFailure(f"Malformed estimate: {estimate!r}")

    values = (estimate.point, estimate.low, estimate.high)
    try:
        point, low, high = (float(v) for v in values)
    except (TypeError, ValueError):
        raise EstimatorFailure(f"Non-numeric estimate: {estimate!r}")

    if not all(math.isfinite(v) for v in (point, low, high)):
        raise EstimatorFailure(f"Non-finite estimate: {estimate!r}")
    if not low <= point <= high:
        raise EstimatorFailure(f"Estimate interval out of order: {estimate!r}")

    return PopulationEstimate(point=point, low=low, high=high)
