"""Tests for study configuration."""

import tempfile
from pathlib import Path

import pandas as pd
import pytest

from stratify.config import AgeBin, EligibilityWindow, StudyConfig, load_config


def _raw_config(**overrides):
    raw = {
        "sources": ["a", "b"],
        "periods": {
            2018: {"start": "2001-01-01", "end": "2002-12-31"},
            2017: {"start": "1999-01-01", "end": "2000-12-31"},
        },
        "age_bins": [
            {"label": "young", "low": 0, "high": 16},
            {"label": "old", "low": 17, "high": 20},
        ],
    }
    raw.update(overrides)
    return raw


class TestStudyConfig:
    """Tests for StudyConfig construction and validation."""

    def test_from_dict_sorts_periods(self):
        """Windows should be ordered by period regardless of input order."""
        config = StudyConfig.from_dict(_raw_config())
        assert config.periods == [2017, 2018]

    def test_defaults(self):
        """Demographics, quantiles and column template have defaults."""
        config = StudyConfig.from_dict(_raw_config())
        assert config.demographics == ("sex", "race_category")
        assert config.quantiles == (0.025, 0.975)
        assert config.source_column("a", 2017) == "a_2017"

    def test_stratum_keys(self):
        """Stratum keys are demographics, then age category, then period."""
        config = StudyConfig.from_dict(_raw_config())
        assert config.stratum_keys == ["sex", "race_category", "age_category", "period"]

    def test_required_columns(self):
        """Every (source, period) column is required."""
        config = StudyConfig.from_dict(_raw_config())
        required = config.required_columns()
        assert required[:4] == ["person_id", "sex", "race_category", "birth_date"]
        assert set(required[4:]) == {"a_2017", "b_2017", "a_2018", "b_2018"}

    def test_custom_column_template(self):
        """Column template is configurable."""
        config = StudyConfig.from_dict(_raw_config(column_template="in_{source}_{period}"))
        assert config.period_columns(2018) == ["in_a_2018", "in_b_2018"]

    def test_overlapping_windows_rejected(self):
        """Eligibility windows must not overlap."""
        raw = _raw_config(periods={
            2017: {"start": "1999-01-01", "end": "2001-06-30"},
            2018: {"start": "2001-01-01", "end": "2002-12-31"},
        })
        with pytest.raises(ValueError, match="overlap"):
            StudyConfig.from_dict(raw)

    def test_inverted_window_rejected(self):
        raw = _raw_config(periods={2017: {"start": "2001-01-01", "end": "1999-01-01"}})
        with pytest.raises(ValueError, match="starts after"):
            StudyConfig.from_dict(raw)

    def test_age_bins_must_be_contiguous(self):
        """A gap between age bins is rejected."""
        raw = _raw_config(age_bins=[
            {"label": "young", "low": 0, "high": 14},
            {"label": "old", "low": 17, "high": 20},
        ])
        with pytest.raises(ValueError, match="contiguous"):
            StudyConfig.from_dict(raw)

    def test_any_number_of_age_bins(self):
        """The age partition is not limited to two bins."""
        raw = _raw_config(age_bins=[
            {"label": "0-5", "low": 0, "high": 5},
            {"label": "6-11", "low": 6, "high": 11},
            {"label": "12-17", "low": 12, "high": 17},
            {"label": "18-20", "low": 18, "high": 20},
        ])
        config = StudyConfig.from_dict(raw)
        assert [b.label for b in config.age_bins] == ["0-5", "6-11", "12-17", "18-20"]

    def test_empty_sources_rejected(self):
        with pytest.raises(ValueError, match="source"):
            StudyConfig.from_dict(_raw_config(sources=[]))

    def test_duplicate_sources_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            StudyConfig.from_dict(_raw_config(sources=["a", "a"]))

    def test_missing_key_rejected(self):
        raw = _raw_config()
        del raw["age_bins"]
        with pytest.raises(ValueError, match="age_bins"):
            StudyConfig.from_dict(raw)

    def test_invalid_quantiles_rejected(self):
        with pytest.raises(ValueError, match="quantiles"):
            StudyConfig.from_dict(_raw_config(quantiles=[0.975, 0.025]))

    def test_check_columns(self):
        """check_columns names the missing columns."""
        config = StudyConfig.from_dict(_raw_config())
        df = pd.DataFrame(columns=["person_id", "sex", "race_category", "birth_date", "a_2017"])
        with pytest.raises(ValueError, match="b_2017"):
            config.check_columns(df)

    def test_direct_construction(self):
        """StudyConfig can be built from dataclasses directly."""
        config = StudyConfig(
            sources=["x"],
            windows=[EligibilityWindow(2020, pd.Timestamp("2005-01-01"), pd.Timestamp("2005-12-31"))],
            age_bins=[AgeBin("15", 15, 15)],
        )
        assert config.periods == [2020]


class TestEligibilityWindow:
    """Tests for birth-date windows."""

    def test_contains_is_inclusive(self):
        window = EligibilityWindow(2017, pd.Timestamp("1999-01-01"), pd.Timestamp("2000-12-31"))
        births = pd.Series(pd.to_datetime(["1998-12-31", "1999-01-01", "2000-12-31", "2001-01-01"]))
        assert window.contains(births).tolist() == [False, True, True, False]


class TestLoadConfig:
    """Tests for YAML loading."""

    def test_load_yaml(self):
        """load_config should parse YAML with dates and integer period keys."""
        yaml_text = """
sources: [cws, probation]
periods:
  2017: {start: 1999-01-01, end: 2000-12-31}
age_bins:
  - {label: "17-18", low: 17, high: 18}
demographics: [sex]
"""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "study.yaml"
            path.write_text(yaml_text)
            config = load_config(path)

        assert config.sources == ["cws", "probation"]
        assert config.periods == [2017]
        assert config.windows[0].start == pd.Timestamp("1999-01-01")
        assert config.demographics == ("sex",)

    def test_shipped_example_config_is_valid(self):
        """The example study config in config/ should load."""
        path = Path(__file__).parent.parent / "config" / "study.yaml"
        config = load_config(path)
        assert config.periods == [2017, 2018, 2019]

    def test_non_mapping_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bad.yaml"
            path.write_text("- just\n- a list\n")
            with pytest.raises(ValueError, match="mapping"):
                load_config(path)

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/study.yaml")
