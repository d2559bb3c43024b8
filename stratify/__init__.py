"""
Stratified capture-history preparation for multiple-systems estimation.

Turns linked, multi-period, multi-source person records into per-stratum
capture matrices and runs a population estimator on each stratum:
- Eligibility: keep records eligible and observed in some period
- Expansion: one row per counted (person, period)
- Strata: disjoint demographic/period groups with capture tables
- Capture: prune non-informative sources, tally capture patterns
- Orchestration: identifiability check and estimate per stratum
"""

from .config import AgeBin, EligibilityWindow, StudyConfig, load_config
from .loader import coerce_flags, load_observations, prepare_observations
from .eligibility import eligibility_flags, filter_eligible
from .expand import assign_age_category, expand_person_periods
from .strata import EmptyCohort, assign_strata, build_stratum_tables, stratum_table
from .capture import (
    CaptureMatrix,
    DataIntegrityError,
    EmptyStratumError,
    build_capture_matrix,
    prune_sources,
    singleton_contributions,
)
from .orchestrator import StratumOrchestrator, StratumSummary

__all__ = [
    # Config
    "AgeBin",
    "EligibilityWindow",
    "StudyConfig",
    "load_config",
    # Loader
    "load_observations",
    "coerce_flags",
    "prepare_observations",
    # Eligibility
    "eligibility_flags",
    "filter_eligible",
    # Expansion
    "assign_age_category",
    "expand_person_periods",
    # Strata
    "EmptyCohort",
    "assign_strata",
    "build_stratum_tables",
    "stratum_table",
    # Capture
    "CaptureMatrix",
    "DataIntegrityError",
    "EmptyStratumError",
    "build_capture_matrix",
    "prune_sources",
    "singleton_contributions",
    # Orchestration
    "StratumOrchestrator",
    "StratumSummary",
]
