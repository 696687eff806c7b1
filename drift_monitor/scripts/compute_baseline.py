#!/usr/bin/env python
"""
Compute a metric baseline and make it active.

Baselines are the reference every drift check compares against, so they are
usually (re)computed after a known-good period: a release that was watched
closely, or a week of traffic after a prompt or model change.

Usage:
    # From stored aggregates (the store must be shared, i.e. Redis)
    python -m drift_monitor.scripts.compute_baseline \\
        --tenant tenant-a --category performance --name response_latency_ms \\
        --from-history --window-days 7 --config monitoring.yaml

    # From a file of reference values (CSV column, JSON list or one value per line)
    python -m drift_monitor.scripts.compute_baseline \\
        --tenant tenant-a --category input_distribution --name message_length \\
        --values-file reference.csv --column message_length --verify

Design Decisions:
1. The new baseline is activated immediately; the previous one is archived
   and stays queryable as history
2. Values files go through pandas so CSV exports from the warehouse work
   without conversion
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from drift_monitor.config import MonitoringConfig
from drift_monitor.drift import BaselineManager
from drift_monitor.errors import DriftMonitorError
from drift_monitor.models import MetricCategory
from drift_monitor.store import create_store

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_values(path: Path, column: Optional[str] = None) -> List[float]:
    """
    Load reference values from a file.

    Supported formats:
        .csv  - ``column`` (or the only column) of the file
        .json - a JSON list of numbers, or records with ``column``
        other - one value per line

    Raises:
        FileNotFoundError: If ``path`` does not exist
        ValueError: If the column cannot be determined
    """
    if not path.exists():
        raise FileNotFoundError(f"Values file not found at {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(path)
    elif suffix == ".json":
        df = pd.read_json(path)
    else:
        df = pd.read_csv(path, header=None, names=["value"])

    if column is None:
        if len(df.columns) != 1:
            raise ValueError(
                f"{path} has columns {list(df.columns)}; pass --column to pick one"
            )
        column = df.columns[0]
    elif column not in df.columns:
        raise ValueError(f"Column {column!r} not in {path} (columns: {list(df.columns)})")

    values = pd.to_numeric(df[column], errors="coerce").dropna()
    logger.info(f"Loaded {len(values)} values from {path}")
    return values.astype(float).tolist()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compute a metric baseline for drift detection"
    )
    parser.add_argument("--tenant", required=True, help="Tenant id")
    parser.add_argument(
        "--category",
        required=True,
        choices=[c.value for c in MetricCategory],
        help="Metric category"
    )
    parser.add_argument("--name", required=True, help="Metric name")
    parser.add_argument(
        "--window-days",
        type=int,
        default=7,
        help="Reference window length in days (default: 7)"
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--from-history",
        action="store_true",
        help="Build from stored aggregates of the last --window-days days"
    )
    source.add_argument(
        "--values-file",
        type=Path,
        help="Build from reference values in this file"
    )

    parser.add_argument("--column", default=None, help="Column of --values-file to use")
    parser.add_argument("--description", default=None, help="Note stored with the baseline")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file (default: environment)"
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Read the active baseline back after saving"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = MonitoringConfig.from_yaml(args.config) if args.config else MonitoringConfig.from_env()
        if config.store.backend == "memory":
            logger.warning("Using the in-memory store; the baseline will not outlive this process")

        store = create_store(config.store)
        manager = BaselineManager(store)

        if args.from_history:
            baseline = manager.create_from_history(
                args.tenant, args.category, args.name,
                window_days=args.window_days,
                description=args.description,
            )
        else:
            values = load_values(args.values_file, args.column)
            baseline = manager.create(
                args.tenant, args.category, args.name, values,
                window_days=args.window_days,
                description=args.description,
                metadata={"source": "file", "path": str(args.values_file)},
            )

        logger.info(
            f"Activated baseline {baseline.id} for {args.tenant}/{args.category}/{args.name}: "
            f"mean={baseline.mean:.4f}, std={baseline.std:.4f}, n={baseline.sample_count}"
        )

        if args.verify:
            active = manager.get_active(args.tenant, args.category, args.name)
            if active is None or active.id != baseline.id:
                logger.error("Verification failed: baseline is not the active one")
                return 1
            logger.info(f"Verified: {len(active.proportions)} histogram bins stored")

        store.close()
        return 0

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except (DriftMonitorError, ValueError) as e:
        logger.error(f"Failed to compute baseline: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
