"""Response builders for tiergate.

Builders turn connection-manager state and probe results into the pydantic
payloads served by the HTTP routes and MCP tools.
"""

from __future__ import annotations

import platform

from tiergate.exceptions import classify_error
from tiergate.models import DbStatusError, DbStatusResult, LivenessResult
from tiergate.services.config_service import AppSettings
from tiergate.services.state import ConnectionSnapshot


def _runtime() -> str:
    return f"{platform.python_implementation().lower()} {platform.python_version()}"


class LivenessResultBuilder:
    """Builder for LivenessResult objects."""

    @staticmethod
    def build(snapshot: ConnectionSnapshot, uptime_seconds: float, *, tier: str = "web") -> LivenessResult:
        """Build the liveness payload from a state snapshot.

        Reconnecting counts as disconnected: only a successful probe may
        report "connected".
        """
        return LivenessResult(
            tier=tier,
            runtime=_runtime(),
            uptime_seconds=round(max(uptime_seconds, 0.0), 3),
            database="connected" if snapshot.is_connected else "disconnected",
            readiness=snapshot.readiness.value,
        )


class DbStatusResultBuilder:
    """Builder for database status payloads."""

    @staticmethod
    def success(settings: AppSettings, record_count: int) -> DbStatusResult:
        return DbStatusResult(
            database=settings.db_name,
            host=settings.db_host,
            port=settings.db_port,
            tables=[settings.status_table],
            record_count=record_count,
        )

    @staticmethod
    def failure(settings: AppSettings, exc: BaseException, *, message: str | None = None) -> DbStatusError:
        """Build the 503 payload with enough detail to diagnose without shell access."""
        classified = classify_error(exc)
        return DbStatusError(
            error=message or str(exc) or type(exc).__name__,
            classification=classified.classification,
            code=classified.code,
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
        )
