"""
MSE pipeline: stratified population estimates from linked observation lists.

Reads the linked person-level observation table, reconciles eligibility
across periods, builds per-stratum capture matrices and runs the estimator
on each stratum, writing one report row per stratum.

Usage:
    python -m mseplex.pipeline --config study.yaml --input obs.parquet --output report.csv
    python -m mseplex.pipeline --config study.yaml --input obs.csv --workers 4
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd

from stratify.config import StudyConfig, load_config
from stratify.eligibility import filter_eligible
from stratify.estimators import Estimator, SparseMSEEstimator
from stratify.expand import expand_person_periods
from stratify.loader import load_observations, prepare_observations
from stratify.orchestrator import StratumOrchestrator
from stratify.strata import assign_strata, build_stratum_tables


def prepare_strata(
    observations: pd.DataFrame,
    config: StudyConfig,
    verbose: bool = True,
) -> Tuple[pd.DataFrame, Dict[int, pd.DataFrame]]:
    """
    Reshape observations into strata and their capture tables.

    Returns:
        Tuple of (strata frame, {stratum_id: capture table})

    Raises:
        ValueError: If required columns are missing
        EmptyCohort: If nobody is eligible and observed in any period
    """
    observations = prepare_observations(observations, config)

    eligible = filter_eligible(observations, config)
    if verbose:
        print(f"  {len(eligible):,} of {len(observations):,} persons eligible and observed")

    person_periods = expand_person_periods(eligible, config)
    if verbose:
        print(f"  {len(person_periods):,} person-periods")

    assigned, strata = assign_strata(person_periods, config)
    tables = dict(build_stratum_tables(assigned, config))
    if verbose:
        print(f"  Built {len(strata)} strata")

    return strata, tables


def run_pipeline(
    observations: pd.DataFrame,
    config: StudyConfig,
    estimator: Estimator,
    max_workers: int = 1,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Run the full pipeline on an in-memory observation table.

    Args:
        observations: Linked observation table
        config: Study configuration
        estimator: Population estimator
        max_workers: Strata estimated concurrently
        verbose: Print progress

    Returns:
        Report DataFrame, one row per stratum sorted by stratum id
    """
    if verbose:
        print("=" * 60)
        print("MSE PIPELINE")
        print("=" * 60)
        print(f"Sources: {', '.join(config.sources)}")
        print(f"Periods: {', '.join(str(p) for p in config.periods)}")

    strata, tables = prepare_strata(observations, config, verbose=verbose)

    orchestrator = StratumOrchestrator(
        config=config,
        estimator=estimator,
        max_workers=max_workers,
        verbose=verbose,
    )
    report = orchestrator.run(strata, tables.items())

    if verbose:
        print_summary(report)

    return report


def print_summary(report: pd.DataFrame) -> None:
    """Print formatted run totals."""
    estimated = report["point"].notna()
    non_identifiable = report["identifiability"].fillna(0) != 0
    failed = report["error"].notna()

    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)
    print(f"Strata: {len(report):,}")
    print(f"Listed children: {report['n_kids'].sum():,}")
    print(f"Estimated strata: {estimated.sum():,}")
    print(f"Not identifiable: {non_identifiable.sum():,}")
    print(f"Failed: {failed.sum():,}")
    if estimated.any():
        print(f"Estimated total (estimated strata): {report.loc[estimated, 'point'].sum():,.0f}")
        print(f"Estimated unlisted (estimated strata): {report.loc[estimated, 'est_unlisted'].sum():,}")


def write_report(report: pd.DataFrame, path: Path, verbose: bool = True) -> None:
    """Write the report as CSV or parquet, chosen by file suffix."""
    path = Path(path)
    if path.suffix == ".parquet":
        report.to_parquet(path, index=False)
    elif path.suffix == ".csv":
        report.to_csv(path, index=False)
    else:
        raise ValueError(f"Unsupported report format: {path.suffix}. Use .csv or .parquet")
    if verbose:
        print(f"Wrote {len(report):,} strata to {path}")


def main(argv: Optional[List[str]] = None):
    import argparse

    parser = argparse.ArgumentParser(description="Run stratified MSE pipeline")
    parser.add_argument("--config", required=True, help="Study configuration YAML")
    parser.add_argument("--input", required=True, help="Observation table (.csv or .parquet)")
    parser.add_argument("--output", help="Report path (.csv or .parquet)")
    parser.add_argument("--workers", type=int, default=1, help="Strata estimated concurrently")
    parser.add_argument("--rscript", help="Rscript executable (default: $MSE_RSCRIPT or Rscript)")
    parser.add_argument("--quiet", action="store_true", help="Suppress progress output")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    verbose = not args.quiet

    if verbose:
        print(f"Loading observations from {args.input}...")
    observations = load_observations(args.input, config)

    estimator = SparseMSEEstimator.from_env()
    if args.rscript:
        estimator.rscript = args.rscript

    report = run_pipeline(
        observations,
        config,
        estimator,
        max_workers=args.workers,
        verbose=verbose,
    )

    if args.output:
        write_report(report, Path(args.output), verbose=verbose)


if __name__ == "__main__":
    main()
