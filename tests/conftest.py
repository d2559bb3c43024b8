"""Shared fixtures: a three-source, three-period study and an observation builder."""

import pandas as pd
import pytest

from stratify.config import StudyConfig

SOURCES = ["a", "b", "c"]


@pytest.fixture
def study_config():
    """Three sources, periods 2017-2019 with disjoint birth-date windows."""
    return StudyConfig.from_dict({
        "sources": SOURCES,
        "periods": {
            2017: {"start": "1999-01-01", "end": "2000-12-31"},
            2018: {"start": "2001-01-01", "end": "2002-12-31"},
            2019: {"start": "2003-01-01", "end": "2004-12-31"},
        },
        "age_bins": [
            {"label": "15-16", "low": 15, "high": 16},
            {"label": "17-18", "low": 17, "high": 18},
        ],
    })


def person(person_id, birth_date, sex="F", race_category="white", seen=()):
    """
    One observation record.

    ``seen`` lists (source, period) pairs that observed the person; every
    other flag is False.
    """
    record = {
        "person_id": person_id,
        "sex": sex,
        "race_category": race_category,
        "birth_date": pd.Timestamp(birth_date),
    }
    for period in (2017, 2018, 2019):
        for source in SOURCES:
            record[f"{source}_{period}"] = (source, period) in seen
    return record


@pytest.fixture
def make_observations():
    """Build an observation DataFrame from person() records."""
    def _make(records):
        return pd.DataFrame(records)
    return _make
