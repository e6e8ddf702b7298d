"""Command-line entry point: run one bounded load against a set endpoint."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import traceback
from collections.abc import Mapping, Sequence

import httpx
import structlog

from boundload.client import HttpRequestIssuer
from boundload.config import LOG_LEVELS, ConfigError, LoadConfig
from boundload.dispatcher import BoundedDispatcher, OutcomeReporter
from boundload.logs import configure_logging
from boundload.outcome import print_outcome
from boundload.schemas import RunSummary
from boundload.telemetry import Telemetry

logger = structlog.get_logger(__name__)

# argparse destination -> LoadConfig field, for flags that override env values.
_OVERRIDES = {
    "base_url": "base_url",
    "username": "username",
    "password": "password",
    "instance_address": "instance_address",
    "from_address": "from_address",
    "max_sockets": "max_sockets",
    "max_in_flight": "max_in_flight",
    "total_requests": "total_requests",
    "request_timeout": "request_timeout_seconds",
    "log_level": "log_level",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="boundload",
        description=(
            "POST a fixed number of requests to an instance endpoint, keeping a "
            "bounded number in flight. Every flag can also be set through a "
            "BOUNDLOAD_* environment variable."
        ),
    )
    parser.add_argument("--base-url")
    parser.add_argument("--username")
    parser.add_argument("--password")
    parser.add_argument("--instance-address", help="Target instance; requests go to instances/<addr>/set")
    parser.add_argument("--from-address", help="Sent as the kld-from query parameter")
    parser.add_argument("--max-sockets", type=int, help="Connection pool size")
    parser.add_argument("--max-in-flight", type=int, help="Maximum unresolved requests")
    parser.add_argument("--total-requests", type=int, help="Requests to issue over the run")
    parser.add_argument("--request-timeout", type=float, help="Transport timeout in seconds")
    parser.add_argument(
        "--no-drain",
        action="store_true",
        help="Cancel requests still in flight once the budget is admitted",
    )
    parser.add_argument("--log-level", choices=LOG_LEVELS)
    parser.add_argument("--log-json", action="store_true", help="Emit diagnostics as JSON")
    parser.add_argument("--metrics-port", type=int, help="Serve Prometheus metrics on this port")
    return parser


def resolve_config(
    args: argparse.Namespace,
    environ: Mapping[str, str] | None = None,
) -> LoadConfig:
    config = LoadConfig.from_env(environ)
    overrides = {
        field_name: getattr(args, dest)
        for dest, field_name in _OVERRIDES.items()
        if getattr(args, dest) is not None
    }
    if args.no_drain:
        overrides["drain"] = False
    return dataclasses.replace(config, **overrides).validate()


async def run_load(
    config: LoadConfig,
    transport: httpx.AsyncBaseTransport | None = None,
    report: OutcomeReporter = print_outcome,
) -> RunSummary:
    async with HttpRequestIssuer(config, transport=transport) as issuer:
        dispatcher = BoundedDispatcher(
            issue=issuer.issue,
            total_requests=config.total_requests,
            max_in_flight=config.max_in_flight,
            report=report,
            drain=config.drain,
            telemetry=Telemetry(),
        )
        return await dispatcher.run()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = resolve_config(args)
    except ConfigError as exc:
        parser.error(str(exc))

    configure_logging(json_output=args.log_json, level=config.log_level)
    if args.metrics_port is not None:
        Telemetry.serve(args.metrics_port)
        logger.info("metrics_serving", port=args.metrics_port)

    logger.info(
        "run_configured",
        base_url=config.base_url,
        resource=config.resource_path,
        max_sockets=config.max_sockets,
        max_in_flight=config.max_in_flight,
        total_requests=config.total_requests,
        drain=config.drain,
    )
    try:
        summary = asyncio.run(run_load(config))
    except Exception as exc:
        logger.error("run_failed", error=str(exc), error_type=type(exc).__name__)
        traceback.print_exc()
        return 1

    print(summary.model_dump_json(indent=2), flush=True)
    return 0
