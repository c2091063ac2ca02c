"""Command-line entry point: `python -m pipelinescope`."""

import argparse
import dataclasses
import logging
from collections.abc import Sequence

import uvicorn

from pipelinescope.app import create_dashboard_app
from pipelinescope.core.config import DashboardConfig
from pipelinescope.runtime.embedded import DashboardRuntime


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipelinescope",
        description="Serve metrics, cost, traces and insights for Tekton pipelines.",
    )
    parser.add_argument("--metrics-endpoint", help="Pipeline controller metrics URL")
    parser.add_argument("--host", default="0.0.0.0", help="Address to listen on")
    parser.add_argument("--port", type=int, default=8080, help="Port to listen on")
    parser.add_argument("--kubeconfig", help="Path to a kubeconfig file (out of cluster)")
    parser.add_argument("--master", help="Kubernetes API server URL")
    parser.add_argument("--cost-history-db", help="SQLite file for cost trend history")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    return parser


def config_from_args(args: argparse.Namespace, base: DashboardConfig) -> DashboardConfig:
    """Overlay command-line flags on an environment-derived config."""
    overrides: dict[str, str] = {}
    if args.metrics_endpoint:
        overrides["metrics_endpoint"] = args.metrics_endpoint
    if args.cost_history_db:
        overrides["cost_history_db"] = args.cost_history_db
    return dataclasses.replace(base, **overrides)


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = config_from_args(args, DashboardConfig.from_env())
    runtime = DashboardRuntime(config, kubeconfig=args.kubeconfig, master=args.master)
    app = create_dashboard_app(runtime)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
