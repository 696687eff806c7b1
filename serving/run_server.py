#!/usr/bin/env python3
"""
Run the drift monitor API server.

Usage:
    python serving/run_server.py

    Or with custom settings:
    python serving/run_server.py --port 8080 --store redis --config monitoring.yaml

The app builds its MonitoringService from the environment at startup, so
``--config`` and ``--store`` are passed on as DRIFT_CONFIG and
METRIC_STORE_MODE. That also reaches the worker process spawned by
``--reload``.
"""

import argparse
import os
from typing import List, Optional

import uvicorn


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the drift monitor API")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument(
        "--store",
        default=None,
        choices=["memory", "redis"],
        help="Storage backend (default: from config or environment)"
    )
    parser.add_argument("--workers", type=int, default=1, help="Uvicorn worker processes")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: info)"
    )
    return parser


def export_settings(args: argparse.Namespace) -> None:
    """Hand command line settings to the app through its environment variables."""
    if args.config:
        os.environ["DRIFT_CONFIG"] = os.path.abspath(args.config)
    if args.store:
        os.environ["METRIC_STORE_MODE"] = args.store


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    export_settings(args)

    backend = os.getenv("METRIC_STORE_MODE", "from config")
    if backend == "memory" and args.workers > 1:
        # Each worker would get its own private store
        print("Warning: --workers > 1 with the in-memory store splits state between processes")

    print(f"Starting drift monitor on {args.host}:{args.port} (store: {backend})")
    print(f"API docs available at: http://{args.host}:{args.port}/docs")

    uvicorn.run(
        "serving.api:app",
        host=args.host,
        port=args.port,
        workers=None if args.reload else args.workers,
        reload=args.reload,
        log_level=args.log_level
    )


if __name__ == "__main__":
    main()
