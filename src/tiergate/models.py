"""Pydantic models for tiergate HTTP routes, MCP tools and CLI reports.

Minimal, task-focused payloads. Field names are the JSON keys returned to
monitoring and deployment verification.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class LivenessResult(BaseModel):
    """Liveness payload. Always answerable, never probes the database."""

    status: Literal["healthy"] = Field(default="healthy", description="Process liveness")
    timestamp: str = Field(
        default_factory=_utc_now_iso, description="UTC ISO8601 timestamp of the response"
    )
    tier: str = Field(default="web", description="Deployment tier answering the query")
    runtime: str = Field(description="Interpreter identity, e.g. 'python 3.12.4'")
    uptime_seconds: float = Field(ge=0, description="Seconds since the service started")
    database: Literal["connected", "disconnected"] = Field(
        description="Last known database connection state (informational)"
    )
    readiness: str = Field(description="Startup readiness phase of the database connection")


class DbStatusResult(BaseModel):
    """Successful on-demand database probe."""

    connected: Literal[True] = True
    database: str = Field(description="Database name")
    host: str = Field(description="Database host")
    port: int = Field(description="Database port")
    tables: list[str] = Field(default_factory=list, description="Tables checked by the probe")
    record_count: int = Field(ge=0, description="Row count of the status table")
    timestamp: str = Field(default_factory=_utc_now_iso)


class DbStatusError(BaseModel):
    """Failed on-demand database probe (served as 503)."""

    connected: Literal[False] = False
    error: str = Field(description="Underlying error message")
    classification: str = Field(description="Stable error class, e.g. 'connection_refused'")
    code: str | None = Field(default=None, description="Driver SQLSTATE code when available")
    host: str = Field(description="Database host")
    port: int = Field(description="Database port")
    database: str = Field(description="Database name")
    timestamp: str = Field(default_factory=_utc_now_iso)


class ProbeReport(BaseModel):
    """Outcome of a CLI readiness probe (`gate`, `wait-ready`)."""

    target: str = Field(description="What was probed: 'host:port' or the control command")
    state: str = Field(description="Readiness state reached by the probe loop")
    ok: bool
    attempts: int = Field(ge=0)
    elapsed_seconds: float = Field(ge=0)
    last_error: str | None = None
    permanent: bool = Field(default=False, description="True when retrying could never help")
    timestamp: str = Field(default_factory=_utc_now_iso)


class DiagnosticsReport(BaseModel):
    """Local deployment diagnostics."""

    service_url: str
    health: dict[str, object] | None = None
    health_error: str | None = None
    db_status: dict[str, object] | None = None
    db_status_code: int | None = None
    database_reachable: bool | None = None
    markers: dict[str, bool] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=_utc_now_iso)

    @property
    def service_up(self) -> bool:
        return self.health is not None and self.health.get("status") == "healthy"
