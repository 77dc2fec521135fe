"""MCP tool registration for the web tier health surface.

Mirrors the HTTP routes: `service_health` answers from connection state only,
`database_status` runs a fresh probe of the database tier.
"""

from __future__ import annotations

from fastmcp import FastMCP
from fastmcp.utilities.logging import get_logger

from tiergate.models import DbStatusError, DbStatusResult, LivenessResult
from tiergate.services.connection_manager import DatabaseConnectionManager

_logger = get_logger(__name__)


def register_health_tools(mcp: FastMCP) -> None:
    """Register the liveness and database status tools on `mcp`."""

    @mcp.tool
    async def service_health() -> LivenessResult:  # pyright: ignore[reportUnusedFunction]
        """Report web tier liveness, uptime and the last known database state."""
        return DatabaseConnectionManager.get_instance().liveness()

    @mcp.tool
    async def database_status() -> (  # pyright: ignore[reportUnusedFunction]
        DbStatusResult | DbStatusError
    ):
        """Probe the database now and report its record count or a classified error."""
        result = await DatabaseConnectionManager.get_instance().query_dependency()
        if isinstance(result, DbStatusError):
            _logger.warning("database_status: %s (%s)", result.error, result.classification)
        return result
