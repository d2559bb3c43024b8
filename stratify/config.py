"""
Study configuration for stratified MSE preparation.

Describes which sources and reporting periods exist, the birth-date
eligibility window of each period, and the age partition used for strata.

Example YAML:
    sources: [cws, probation, school]
    periods:
      2017: {start: 1999-01-01, end: 2000-12-31}
      2018: {start: 2001-01-01, end: 2002-12-31}
    age_bins:
      - {label: "15-16", low: 15, high: 16}
      - {label: "17-18", low: 17, high: 18}
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
import yaml

DEFAULT_DEMOGRAPHICS = ("sex", "race_category")
DEFAULT_QUANTILES = (0.025, 0.975)


@dataclass(frozen=True)
class EligibilityWindow:
    """
    Birth-date window deciding who is eligible in a reporting period.

    Attributes:
        period: Reporting period (year)
        start: First eligible birth date (inclusive)
        end: Last eligible birth date (inclusive)
    """

    period: int
    start: pd.Timestamp
    end: pd.Timestamp

    def contains(self, birth_dates: pd.Series) -> pd.Series:
        """Return boolean mask of birth dates inside the window."""
        return (birth_dates >= self.start) & (birth_dates <= self.end)

    def overlaps(self, other: "EligibilityWindow") -> bool:
        return self.start <= other.end and other.start <= self.end


@dataclass(frozen=True)
class AgeBin:
    """An age category covering ``low`` to ``high`` (both inclusive)."""

    label: str
    low: int
    high: int


@dataclass
class StudyConfig:
    """
    Configuration for one estimation run.

    Attributes:
        sources: Source (list) names, in report order
        windows: One eligibility window per reporting period
        age_bins: Ordered, contiguous partition of the age axis
        demographics: Demographic columns that key a stratum
        quantiles: Interval quantiles passed to the estimator
        column_template: Observation column name for a (source, period) pair
        person_id_col: Column holding the linked person id
        birth_date_col: Column holding the birth date
    """

    sources: list[str]
    windows: list[EligibilityWindow]
    age_bins: list[AgeBin]
    demographics: tuple[str, ...] = DEFAULT_DEMOGRAPHICS
    quantiles: tuple[float, float] = DEFAULT_QUANTILES
    column_template: str = "{source}_{period}"
    person_id_col: str = "person_id"
    birth_date_col: str = "birth_date"

    def __post_init__(self):
        self.windows = sorted(self.windows, key=lambda w: w.period)
        self.demographics = tuple(self.demographics)
        self.quantiles = tuple(self.quantiles)
        self.validate()

    @property
    def periods(self) -> list[int]:
        return [w.period for w in self.windows]

    @property
    def stratum_keys(self) -> list[str]:
        """Columns whose distinct combinations define a stratum."""
        return [*self.demographics, "age_category", "period"]

    def source_column(self, source: str, period: int) -> str:
        return self.column_template.format(source=source, period=period)

    def period_columns(self, period: int) -> list[str]:
        """Observation columns for every source in one period."""
        return [self.source_column(s, period) for s in self.sources]

    def required_columns(self) -> list[str]:
        columns = [self.person_id_col, *self.demographics, self.birth_date_col]
        for period in self.periods:
            columns.extend(self.period_columns(period))
        return columns

    def check_columns(self, df: pd.DataFrame) -> None:
        """
        Raise if the observation table lacks any configured column.

        Raises:
            ValueError: If required columns are missing
        """
        missing = [c for c in self.required_columns() if c not in df.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

    def validate(self) -> None:
        """
        Check the configuration is internally consistent.

        Raises:
            ValueError: On empty sources/periods, duplicate or overlapping
                windows, or an age partition that is unordered or has gaps
        """
        if not self.sources:
            raise ValueError("At least one source must be configured")
        if len(set(self.sources)) != len(self.sources):
            raise ValueError(f"Duplicate source names: {self.sources}")
        if not self.windows:
            raise ValueError("At least one period must be configured")

        periods = self.periods
        if len(set(periods)) != len(periods):
            raise ValueError(f"Duplicate periods: {periods}")

        for window in self.windows:
            if window.start > window.end:
                raise ValueError(
                    f"Eligibility window for {window.period} starts after it ends"
                )
        for i, window in enumerate(self.windows):
            for other in self.windows[i + 1:]:
                if window.overlaps(other):
                    raise ValueError(
                        f"Eligibility windows for {window.period} and "
                        f"{other.period} overlap"
                    )

        if not self.age_bins:
            raise ValueError("At least one age bin must be configured")
        for age_bin in self.age_bins:
            if age_bin.low > age_bin.high:
                raise ValueError(f"Age bin {age_bin.label!r} has low > high")
        for prev, nxt in zip(self.age_bins, self.age_bins[1:]):
            if nxt.low != prev.high + 1:
                raise ValueError(
                    f"Age bins {prev.label!r} and {nxt.label!r} are not contiguous"
                )

        if len(self.quantiles) != 2 or not 0 < self.quantiles[0] < self.quantiles[1] < 1:
            raise ValueError(f"Invalid quantiles: {self.quantiles}")

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "StudyConfig":
        """Build a config from parsed YAML (or any equivalent mapping)."""
        for key in ("sources", "periods", "age_bins"):
            if key not in raw:
                raise ValueError(f"Config missing required key: {key}")

        windows = [
            EligibilityWindow(
                period=int(period),
                start=pd.Timestamp(bounds["start"]),
                end=pd.Timestamp(bounds["end"]),
            )
            for period, bounds in raw["periods"].items()
        ]
        age_bins = [
            AgeBin(label=str(b["label"]), low=int(b["low"]), high=int(b["high"]))
            for b in raw["age_bins"]
        ]

        optional = {}
        for key in ("column_template", "person_id_col", "birth_date_col"):
            if key in raw:
                optional[key] = raw[key]
        if "demographics" in raw:
            optional["demographics"] = tuple(raw["demographics"])
        if "quantiles" in raw:
            optional["quantiles"] = tuple(float(q) for q in raw["quantiles"])

        return cls(
            sources=[str(s) for s in raw["sources"]],
            windows=windows,
            age_bins=age_bins,
            **optional,
        )


def load_config(path: Path | str) -> StudyConfig:
    """
    Load a study configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated StudyConfig

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the configuration is invalid
    """
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} does not contain a mapping")

    return StudyConfig.from_dict(raw)
