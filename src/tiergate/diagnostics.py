"""Local deployment diagnostics and container healthcheck.

Uses stdlib HTTP only so it runs on a bare host next to the service.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
import json
from pathlib import Path
from typing import Final
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from fastmcp.utilities.logging import get_logger

from tiergate.models import DiagnosticsReport
from tiergate.readiness.marker import CompletionMarker
from tiergate.readiness.tcp_probe import is_reachable

_logger = get_logger(__name__)

DEFAULT_SERVICE_URL: Final[str] = "http://127.0.0.1:3000"
USER_AGENT: Final[str] = "tiergate/healthcheck"
HTTP_OK: Final[int] = 200


def fetch_json(url: str, timeout: float = 4.0) -> tuple[int, dict[str, object]]:
    """GET `url` and decode a JSON object body, including error responses.

    Raises:
        URLError: If the service cannot be reached
        ValueError: If the body is not a JSON object
    """
    req = Request(url, headers={"User-Agent": USER_AGENT})  # noqa: S310
    try:
        with urlopen(req, timeout=timeout) as resp:  # noqa: S310 - operator-supplied http url
            status = resp.status
            body = resp.read()
    except HTTPError as exc:
        status = exc.code
        body = exc.read()
    data = json.loads(body.decode("utf-8"))
    if not isinstance(data, dict):
        msg = f"expected a JSON object from {url}"
        raise ValueError(msg)
    return status, data


def healthcheck(base_url: str = DEFAULT_SERVICE_URL, timeout: float = 4.0) -> int:
    """Return 0 when `/api/health` answers 200 with status healthy, else 1."""
    url = base_url.rstrip("/") + "/api/health"
    try:
        status, data = fetch_json(url, timeout=timeout)
    except (URLError, OSError, ValueError) as exc:
        _logger.error("healthcheck error: %s", exc)
        return 1
    if status != HTTP_OK:
        _logger.error("unexpected status: %s", status)
        return 1
    if data.get("status") != "healthy":
        _logger.error("payload not healthy: %s", data)
        return 1
    return 0


def run_diagnostics(
    base_url: str = DEFAULT_SERVICE_URL,
    *,
    db_host: str | None = None,
    db_port: int | None = None,
    markers: Iterable[str | Path] = (),
    timeout: float = 4.0,
) -> DiagnosticsReport:
    """Collect marker, reachability and endpoint state into one report."""
    base = base_url.rstrip("/")
    report = DiagnosticsReport(service_url=base)

    for path in markers:
        marker = CompletionMarker.at(path)
        report.markers[str(marker.path)] = marker.exists()
        if not marker.exists():
            _logger.warning("Startup phase may not have completed: %s missing", marker.path)

    if db_host and db_port:
        report.database_reachable = asyncio.run(is_reachable(db_host, db_port, timeout=timeout))
        if not report.database_reachable:
            _logger.warning("Cannot reach database port %s:%d", db_host, db_port)

    try:
        _status, report.health = fetch_json(f"{base}/api/health", timeout=timeout)
    except (URLError, OSError, ValueError) as exc:
        report.health_error = str(exc)
        _logger.error("Health check failed: %s", exc)
        return report

    try:
        report.db_status_code, report.db_status = fetch_json(f"{base}/api/db-status", timeout=timeout)
    except (URLError, OSError, ValueError) as exc:
        _logger.error("Database status check failed: %s", exc)
    return report
