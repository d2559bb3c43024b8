"""Tests for the SparseMSE Rscript adapter (subprocess mocked)."""

import os
import subprocess
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from stratify.capture import CaptureMatrix
from stratify.estimators.base import (
    EstimatorFailure,
    NonEstimable,
    PopulationEstimate,
    validate_estimate,
    validate_identifiability,
)
from stratify.estimators.sparse_mse import SparseMSEEstimator


@pytest.fixture
def matrix():
    return CaptureMatrix(
        sources=["a", "b", "c"],
        patterns=np.array([[0, 0, 1], [0, 1, 0], [1, 0, 0], [1, 1, 0]]),
        counts=np.array([3, 5, 7, 2]),
    )


def _completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestFromEnv:
    """Tests for environment configuration."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            estimator = SparseMSEEstimator.from_env()
        assert estimator.rscript == "Rscript"
        assert estimator.method == "stepwise"

    def test_overrides(self):
        with patch.dict(os.environ, {
            "MSE_RSCRIPT": "/opt/R/bin/Rscript",
            "MSE_METHOD": "fixed",
            "MSE_TIMEOUT": "30",
        }):
            estimator = SparseMSEEstimator.from_env()
        assert estimator.rscript == "/opt/R/bin/Rscript"
        assert estimator.method == "fixed"
        assert estimator.timeout == 30.0

    def test_bad_timeout(self):
        with patch.dict(os.environ, {"MSE_TIMEOUT": "soon"}):
            with pytest.raises(ValueError, match="MSE_TIMEOUT"):
                SparseMSEEstimator.from_env()


class TestCheckIdentifiability:
    """Tests for the checkident call."""

    def test_parses_code(self, matrix):
        with patch("subprocess.run", return_value=_completed("IDENT 2 \n")) as run:
            code = SparseMSEEstimator().check_identifiability(matrix)
        assert code == 2
        argv = run.call_args[0][0]
        assert argv[0] == "Rscript"
        assert argv[1] == "-e"

    def test_matrix_written_as_csv(self, matrix):
        """The R side receives source columns then the count column."""
        seen = {}

        def fake_run(argv, **kwargs):
            seen["frame"] = pd.read_csv(Path(argv[3]))
            return _completed("IDENT 0\n")

        with patch("subprocess.run", side_effect=fake_run):
            SparseMSEEstimator().check_identifiability(matrix)

        assert list(seen["frame"].columns) == ["a", "b", "c", "count"]
        assert seen["frame"]["count"].tolist() == [3, 5, 7, 2]

    def test_ignores_leading_noise(self, matrix):
        with patch("subprocess.run", return_value=_completed("Loading...\nIDENT 0\n")):
            assert SparseMSEEstimator().check_identifiability(matrix) == 0

    def test_unknown_code_fails(self, matrix):
        with patch("subprocess.run", return_value=_completed("IDENT 9\n")):
            with pytest.raises(EstimatorFailure):
                SparseMSEEstimator().check_identifiability(matrix)

    def test_nonzero_exit_fails(self, matrix):
        with patch("subprocess.run", return_value=_completed(returncode=1, stderr="no package SparseMSE")):
            with pytest.raises(EstimatorFailure, match="no package"):
                SparseMSEEstimator().check_identifiability(matrix)

    def test_missing_rscript_fails(self, matrix):
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(EstimatorFailure, match="not found"):
                SparseMSEEstimator(rscript="/missing/Rscript").check_identifiability(matrix)

    def test_timeout_fails(self, matrix):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="Rscript", timeout=1)):
            with pytest.raises(EstimatorFailure, match="timed out"):
                SparseMSEEstimator(timeout=1).check_identifiability(matrix)

    def test_empty_output_fails(self, matrix):
        with patch("subprocess.run", return_value=_completed("")):
            with pytest.raises(EstimatorFailure, match="no output"):
                SparseMSEEstimator().check_identifiability(matrix)


class TestEstimatePopulation:
    """Tests for the estimatepopulation.0 call."""

    def test_parses_estimate(self, matrix):
        with patch("subprocess.run", return_value=_completed("ESTIMATE 31.2 24.9 45.7\n")) as run:
            estimate = SparseMSEEstimator().estimate_population(matrix, (0.025, 0.975))

        assert estimate == PopulationEstimate(point=31.2, low=24.9, high=45.7)
        argv = run.call_args[0][0]
        assert argv[4:] == ["stepwise", "0.025", "0.975"]

    def test_non_identifiable_raises(self, matrix):
        with patch("subprocess.run", return_value=_completed("IDENT 1\n")):
            with pytest.raises(NonEstimable) as excinfo:
                SparseMSEEstimator().estimate_population(matrix)
        assert excinfo.value.code == 1

    def test_na_output_fails(self, matrix):
        with patch("subprocess.run", return_value=_completed("ESTIMATE NA NA NA\n")):
            with pytest.raises(EstimatorFailure):
                SparseMSEEstimator().estimate_population(matrix)

    def test_wrong_arity_fails(self, matrix):
        with patch("subprocess.run", return_value=_completed("ESTIMATE 31.2\n")):
            with pytest.raises(EstimatorFailure):
                SparseMSEEstimator().estimate_population(matrix)


class TestValidation:
    """Tests for estimator output validation."""

    def test_identifiability_codes(self):
        assert [validate_identifiability(c) for c in (0, 1, 2, 3)] == [0, 1, 2, 3]
        assert validate_identifiability(np.int64(2)) == 2
        for bad in (4, -1, 1.5, None, "x"):
            with pytest.raises(EstimatorFailure):
                validate_identifiability(bad)

    def test_estimate_order(self):
        with pytest.raises(EstimatorFailure, match="order"):
            validate_estimate(PopulationEstimate(point=10, low=12, high=20))

    def test_estimate_finite(self):
        with pytest.raises(EstimatorFailure, match="Non-finite"):
            validate_estimate(PopulationEstimate(point=float("nan"), low=1, high=2))

    def test_estimate_type(self):
        with pytest.raises(EstimatorFailure, match="Malformed"):
            validate_estimate((10, 8, 12))
