"""Command-line entrypoint for tiergate.

Subcommands cover both tiers of a two-VM deployment:

- `serve`       run the web tier service (optionally behind the TCP gate)
- `gate`        pre-flight TCP reachability gate; never fails the deployment
- `wait-ready`  database tier readiness probe writing completion markers
- `healthcheck` container healthcheck against `/api/health`
- `diagnose`    local diagnostics: markers, database port, service endpoints
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
import logging
import sys

import dotenv
from fastmcp.utilities.logging import configure_logging, get_logger

from tiergate.diagnostics import DEFAULT_SERVICE_URL, healthcheck, run_diagnostics
from tiergate.exceptions import MisconfigurationError
from tiergate.readiness import command_probe, tcp_probe
from tiergate.readiness.command_probe import DEFAULT_READINESS_COMMAND, ReadinessMarkers
from tiergate.readiness.marker import CompletionMarker
from tiergate.server import mcp
from tiergate.services.config_service import ConfigService
from tiergate.services.connection_manager import DatabaseConnectionManager

_logger = get_logger(__name__)

EXIT_MISCONFIGURED = 2
LOG_FILE_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging(level: str, log_file: str | None) -> None:
    configure_logging(level=level)  # type: ignore[arg-type]
    if log_file:
        handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT, datefmt=LOG_DATE_FORMAT))
        logging.getLogger("fastmcp").addHandler(handler)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tiergate", description=__doc__.splitlines()[0])
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None, help="Append log lines to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the web tier HTTP service")
    serve.add_argument("--host", default="0.0.0.0", help="Listen address")  # noqa: S104
    serve.add_argument(
        "--preflight", action="store_true", help="Wait for the database port before serving"
    )

    gate = sub.add_parser("gate", help="Pre-flight TCP reachability gate")
    gate.add_argument("--host", required=True)
    gate.add_argument("--port", type=int, required=True)
    gate.add_argument("--max-wait", type=float, default=None, help="Total wait budget (s)")
    gate.add_argument("--interval", type=float, default=None, help="Poll interval (s)")
    gate.add_argument("--timeout", type=float, default=None, help="Per-attempt timeout (s)")

    ready = sub.add_parser("wait-ready", help="Poll a local readiness command")
    ready.add_argument("--max-wait", type=float, default=None)
    ready.add_argument("--interval", type=float, default=None)
    ready.add_argument("--timeout", type=float, default=None)
    ready.add_argument("--ready-marker", default=None, help="Written only when ready")
    ready.add_argument("--complete-marker", default=None, help="Written when the phase ends")
    ready.add_argument("readiness_command", nargs=argparse.REMAINDER, help="-- CMD [ARGS...]")

    check = sub.add_parser("healthcheck", help="Exit 0 when /api/health is healthy")
    check.add_argument("--url", default=DEFAULT_SERVICE_URL)

    diag = sub.add_parser("diagnose", help="Report markers, database port and endpoints")
    diag.add_argument("--url", default=DEFAULT_SERVICE_URL)
    diag.add_argument("--db-host", default=None)
    diag.add_argument("--db-port", type=int, default=None)
    diag.add_argument("--marker", action="append", default=[], help="Marker path (repeatable)")
    return parser


def _cmd_serve(args: argparse.Namespace) -> int:
    try:
        settings = ConfigService.load_settings()
    except MisconfigurationError as exc:
        _logger.error("Refusing to start: %s", exc)
        return EXIT_MISCONFIGURED

    _logger.info(
        "Configuration: DB_HOST=%s, DB_PORT=%d, APP_PORT=%d",
        settings.db_host,
        settings.db_port,
        settings.app_port,
    )
    if args.preflight:
        asyncio.run(
            tcp_probe.wait_for_tcp(settings.db_host, settings.db_port, ConfigService.preflight_policy())
        )

    DatabaseConnectionManager.get_instance().configure(settings)
    _logger.info("Web application listening on port %d", settings.app_port)
    mcp.run(transport="http", host=args.host, port=settings.app_port, show_banner=False)
    return 0


def _cmd_gate(args: argparse.Namespace) -> int:
    policy = ConfigService.preflight_policy().with_overrides(
        max_wait=args.max_wait, interval=args.interval, attempt_timeout=args.timeout
    )
    outcome = asyncio.run(tcp_probe.wait_for_tcp(args.host, args.port, policy))
    print(tcp_probe.report_for(args.host, args.port, outcome).model_dump_json(indent=2))
    return 0


def _cmd_wait_ready(args: argparse.Namespace) -> int:
    argv = list(args.readiness_command)
    if argv and argv[0] == "--":
        argv = argv[1:]
    argv = argv or list(DEFAULT_READINESS_COMMAND)
    policy = ConfigService.db_readiness_policy().with_overrides(
        max_wait=args.max_wait, interval=args.interval, attempt_timeout=args.timeout
    )
    markers = ReadinessMarkers(
        ready=CompletionMarker.at(args.ready_marker) if args.ready_marker else None,
        complete=CompletionMarker.at(args.complete_marker) if args.complete_marker else None,
    )
    outcome = asyncio.run(command_probe.wait_for_command(argv, policy, markers=markers))
    print(command_probe.report_for(argv, outcome).model_dump_json(indent=2))
    return 0


def _cmd_healthcheck(args: argparse.Namespace) -> int:
    return healthcheck(args.url)


def _cmd_diagnose(args: argparse.Namespace) -> int:
    report = run_diagnostics(
        args.url, db_host=args.db_host, db_port=args.db_port, markers=args.marker
    )
    print(report.model_dump_json(indent=2))
    return 0 if report.service_up else 1


_COMMANDS = {
    "serve": _cmd_serve,
    "gate": _cmd_gate,
    "wait-ready": _cmd_wait_ready,
    "healthcheck": _cmd_healthcheck,
    "diagnose": _cmd_diagnose,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments and dispatch to a subcommand."""
    dotenv.load_dotenv()
    args = _build_parser().parse_args(argv)
    _configure_logging(args.log_level, args.log_file)
    try:
        return _COMMANDS[args.command](args)
    except KeyboardInterrupt:
        _logger.info("Interrupted by user. Exiting cleanly.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
