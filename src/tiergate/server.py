"""FastMCP server implementation for tiergate.

Serves the web tier's health surface over HTTP and as MCP tools. The server
accepts traffic as soon as it starts; the database connection is established
behind it by `DatabaseConnectionManager`.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import dotenv
from fastmcp import FastMCP
from fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import JSONResponse

from tiergate.mcp_tools import register_health_tools
from tiergate.models import DbStatusError
from tiergate.services.config_service import ConfigService
from tiergate.services.connection_manager import DatabaseConnectionManager

# Load environment variables
dotenv.load_dotenv()

_logger = get_logger(__name__)

HTTP_SERVICE_UNAVAILABLE = 503


# -- Lifespan: connection manager startup/shutdown ---------------------------
@asynccontextmanager
async def lifespan(_mcp_instance: FastMCP) -> AsyncGenerator[None]:
    """Configure the database pool and start connection work in the background.

    Missing configuration is fatal and propagates; database unavailability
    never is.
    """
    manager = DatabaseConnectionManager.get_instance()
    try:
        if not manager.is_configured:
            manager.configure(ConfigService.load_settings())
        _logger.info("Starting database connection work in background during lifespan startup")
        await manager.start()
        yield
    finally:
        _logger.info("Shutting down database connection manager during lifespan shutdown")
        await manager.shutdown()


mcp = FastMCP(
    name="tiergate",
    instructions=(
        "Web tier readiness service. Use service_health for liveness and "
        "database_status for a fresh probe of the database tier."
    ),
    lifespan=lifespan,
)


# -- HTTP routes -------------------------------------------------------------
@mcp.custom_route("/api/health", methods=["GET"])
async def health_check(_request: Request) -> JSONResponse:
    """Liveness: always 200, never waits on the database."""
    manager = DatabaseConnectionManager.get_instance()
    return JSONResponse(manager.liveness().model_dump())


@mcp.custom_route("/api/db-status", methods=["GET"])
async def db_status(_request: Request) -> JSONResponse:
    """Fresh database probe: 200 when it answers, 503 otherwise."""
    manager = DatabaseConnectionManager.get_instance()
    result = await manager.query_dependency()
    if isinstance(result, DbStatusError):
        return JSONResponse(result.model_dump(), status_code=HTTP_SERVICE_UNAVAILABLE)
    return JSONResponse(result.model_dump())


# -- MCP tools ---------------------------------------------------------------
register_health_tools(mcp)
