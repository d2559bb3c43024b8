"""
Population estimators.

Provides the estimator contract used by the orchestrator and adapters for
concrete estimators:
- SparseMSEEstimator: R SparseMSE package via Rscript
"""

from .base import (
    Estimator,
    EstimatorFailure,
    IDENTIFIABLE,
    NonEstimable,
    PopulationEstimate,
)
from .sparse_mse import SparseMSEEstimator

__all__ = [
    "Estimator",
    "EstimatorFailure",
    "IDENTIFIABLE",
    "NonEstimable",
    "PopulationEstimate",
    "SparseMSEEstimator",
]
