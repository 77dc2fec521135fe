"""Configuration service for tiergate.

Centralizes environment variable handling, database engine creation and the
default readiness policies for every waiting phase. Required connection
settings are validated once at startup; a missing value is a fatal
misconfiguration, never a transient condition to retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path

import sqlalchemy as sa

from tiergate.exceptions import MisconfigurationError
from tiergate.readiness.policy import ReadinessPolicy

REQUIRED_VARIABLES: tuple[str, ...] = (
    "TIERGATE_DB_HOST",
    "TIERGATE_DB_PORT",
    "TIERGATE_DB_NAME",
    "TIERGATE_DB_USER",
    "TIERGATE_DB_PASSWORD",
    "TIERGATE_APP_PORT",
)

DEFAULT_DRIVER = "postgresql+psycopg"
DEFAULT_STATUS_TABLE = "users"
MAX_PORT = 65535

# Pool sizing matches the web tier's pg pool settings
POOL_SIZE = 20
POOL_RECYCLE_SECONDS = 30
CONNECT_TIMEOUT_SECONDS = 10


@dataclass(frozen=True, slots=True)
class AppSettings:
    """Validated connection and listener settings."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str = field(repr=False)
    app_port: int
    db_driver: str = DEFAULT_DRIVER
    status_table: str = DEFAULT_STATUS_TABLE
    startup_marker: Path | None = None


def _parse_port(name: str, raw: str) -> int:
    try:
        port = int(raw)
    except ValueError:
        msg = f"{name} must be an integer port, got {raw!r}"
        raise MisconfigurationError(msg) from None
    if not 1 <= port <= MAX_PORT:
        msg = f"{name} must be between 1 and {MAX_PORT}, got {port}"
        raise MisconfigurationError(msg)
    return port


def _env_float(name: str, default: float, minimum: float) -> float:
    val = os.getenv(name, "")
    try:
        n = float(val) if val else default
    except ValueError:
        n = default
    return max(minimum, n)


def _env_int(name: str, default: int, minimum: int) -> int:
    val = os.getenv(name, "")
    try:
        n = int(val) if val else default
    except ValueError:
        n = default
    return max(minimum, n)


class ConfigService:
    """Service for managing configuration, database engines and policies."""

    @staticmethod
    def load_settings() -> AppSettings:
        """Read and validate required settings from the environment.

        Returns:
            Validated AppSettings

        Raises:
            MisconfigurationError: If any required variable is missing or empty,
                or a port is not a valid integer.
        """
        values = {name: os.getenv(name, "").strip() for name in REQUIRED_VARIABLES}
        missing = [name for name, value in values.items() if not value]
        if missing:
            msg = f"Missing required configuration: {', '.join(missing)}"
            raise MisconfigurationError(msg)

        marker = os.getenv("TIERGATE_STARTUP_MARKER", "").strip()
        table = os.getenv("TIERGATE_STATUS_TABLE", "").strip() or DEFAULT_STATUS_TABLE
        if not table.replace("_", "").replace(".", "").isalnum():
            msg = f"TIERGATE_STATUS_TABLE must be a plain table name, got {table!r}"
            raise MisconfigurationError(msg)

        return AppSettings(
            db_host=values["TIERGATE_DB_HOST"],
            db_port=_parse_port("TIERGATE_DB_PORT", values["TIERGATE_DB_PORT"]),
            db_name=values["TIERGATE_DB_NAME"],
            db_user=values["TIERGATE_DB_USER"],
            db_password=values["TIERGATE_DB_PASSWORD"],
            app_port=_parse_port("TIERGATE_APP_PORT", values["TIERGATE_APP_PORT"]),
            db_driver=os.getenv("TIERGATE_DB_DRIVER", "").strip() or DEFAULT_DRIVER,
            status_table=table,
            startup_marker=Path(marker) if marker else None,
        )

    @staticmethod
    def database_url(settings: AppSettings) -> sa.URL:
        """Build the SQLAlchemy URL for the configured database."""
        return sa.URL.create(
            drivername=settings.db_driver,
            username=settings.db_user,
            password=settings.db_password,
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
        )

    @staticmethod
    def create_database_engine(url: sa.URL | str) -> sa.Engine:
        """Create the shared SQLAlchemy engine (the connection pool).

        Pre-ping stays off: connection status must come from explicit probes
        and pool events, not from silent reconnects inside checkout.
        """
        url = sa.make_url(url)
        create_kwargs: dict[str, object] = {"pool_pre_ping": False}
        if url.get_backend_name() == "postgresql":
            create_kwargs.update(
                pool_size=POOL_SIZE,
                max_overflow=0,
                pool_recycle=POOL_RECYCLE_SECONDS,
                pool_timeout=CONNECT_TIMEOUT_SECONDS,
                connect_args={"connect_timeout": CONNECT_TIMEOUT_SECONDS},
            )
        return sa.create_engine(url, **create_kwargs)

    # ---- Readiness policies ------------------------------------------------
    @staticmethod
    def db_readiness_policy() -> ReadinessPolicy:
        """Local control-command polling on the database tier."""
        return ReadinessPolicy(
            name="db-readiness",
            interval=_env_float("TIERGATE_READINESS_INTERVAL", 1.0, 0.0),
            attempt_timeout=5.0,
            max_wait=_env_float("TIERGATE_READINESS_MAX_WAIT", 30.0, 0.0),
        )

    @staticmethod
    def preflight_policy() -> ReadinessPolicy:
        """Pre-flight TCP gate before the web service launches."""
        return ReadinessPolicy(
            name="preflight-tcp",
            interval=_env_float("TIERGATE_PREFLIGHT_INTERVAL", 5.0, 0.0),
            attempt_timeout=5.0,
            max_wait=_env_float("TIERGATE_PREFLIGHT_MAX_WAIT", 120.0, 0.0),
        )

    @staticmethod
    def connect_policy() -> ReadinessPolicy:
        """Initial application-level connection retry."""
        return ReadinessPolicy(
            name="initial-connect",
            interval=_env_float("TIERGATE_CONNECT_DELAY", 5.0, 0.0),
            attempt_timeout=float(CONNECT_TIMEOUT_SECONDS),
            max_attempts=_env_int("TIERGATE_CONNECT_ATTEMPTS", 10, 1),
        )

    @staticmethod
    def background_policy() -> ReadinessPolicy:
        """Unbounded background reconnection, one attempt per tick."""
        return ReadinessPolicy(
            name="background-reconnect",
            interval=_env_float("TIERGATE_RECONNECT_INTERVAL", 30.0, 0.1),
            attempt_timeout=float(CONNECT_TIMEOUT_SECONDS),
        )
