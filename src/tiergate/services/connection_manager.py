"""Database connection manager for tiergate.

Provides a process-wide singleton owning the SQLAlchemy engine (the shared
connection pool) and the connection status cell. The web tier starts serving
immediately; the manager establishes the database connection behind it:

1. an initial bounded retry loop (10 attempts, 5s apart by default),
2. then an unbounded background loop that, once per tick (30s), re-validates
   the pool while connected and makes one reconnection attempt otherwise,
3. while pool events flip the status as connections appear or break.

The background loop is bound to a stop event handed over at spawn time so
shutdown stops it deterministically.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time
from typing import TYPE_CHECKING, ClassVar

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError

from tiergate.builders.response_builders import DbStatusResultBuilder, LivenessResultBuilder
from tiergate.exceptions import describe_error, is_connectivity_error
from tiergate.models import DbStatusError, DbStatusResult, LivenessResult
from tiergate.readiness.marker import CompletionMarker
from tiergate.readiness.policy import ReadinessPolicy, run_probe_loop
from tiergate.services.config_service import AppSettings, ConfigService
from tiergate.services.state import ConnectionSnapshot, ConnectionStatus, ConnectionStatusCell

if TYPE_CHECKING:
    from sqlalchemy.engine import ExceptionContext

VALIDATION_QUERY = "SELECT 1"


def _status_table(name: str) -> sa.TableClause:
    schema, _, table = name.rpartition(".")
    return sa.table(table, schema=schema or None)


class DatabaseConnectionManager:
    """Singleton owner of the database pool and its connection status.

    Request handlers go through the manager's pool; none opens a private
    connection. Status is read through `status()` and changed only by probes
    and pool events.
    """

    _instance: ClassVar[DatabaseConnectionManager | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        """Initialize an unconfigured manager."""
        self._logger = get_logger(__name__)
        self._cell = ConnectionStatusCell()
        self._started_at = time.monotonic()
        self._settings: AppSettings | None = None
        self._engine: sa.Engine | None = None
        self._connect_policy = ConfigService.connect_policy()
        self._background_policy = ConfigService.background_policy()

        self._stop_event: asyncio.Event | None = None
        self._startup_task: asyncio.Task[None] | None = None
        self._background_task: asyncio.Task[None] | None = None
        self._stopped = False

    @classmethod
    def get_instance(cls) -> DatabaseConnectionManager:
        """Get the singleton instance of DatabaseConnectionManager."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (primarily for testing)."""
        with cls._lock:
            cls._instance = None

    # ---- configuration -----------------------------------------------------

    def configure(
        self,
        settings: AppSettings,
        *,
        engine: sa.Engine | None = None,
        connect_policy: ReadinessPolicy | None = None,
        background_policy: ReadinessPolicy | None = None,
    ) -> None:
        """Bind settings and the connection pool.

        Args:
            settings: Validated application settings
            engine: Optional pre-built engine; created from settings when omitted
            connect_policy: Override for the initial retry policy
            background_policy: Override for the background reconnection policy

        Raises:
            RuntimeError: If the manager is already configured
        """
        if self._engine is not None:
            msg = "DatabaseConnectionManager is already configured"
            raise RuntimeError(msg)
        if engine is None:
            engine = ConfigService.create_database_engine(ConfigService.database_url(settings))
        self._settings = settings
        self._engine = engine
        if connect_policy is not None:
            self._connect_policy = connect_policy
        if background_policy is not None:
            self._background_policy = background_policy
        self._attach_pool_events(engine)
        self._logger.info(
            "Database configured: %s:%d/%s", settings.db_host, settings.db_port, settings.db_name
        )

    @property
    def settings(self) -> AppSettings:
        if self._settings is None:
            msg = "DatabaseConnectionManager is not configured"
            raise RuntimeError(msg)
        return self._settings

    @property
    def engine(self) -> sa.Engine:
        if self._engine is None:
            msg = "DatabaseConnectionManager is not configured"
            raise RuntimeError(msg)
        return self._engine

    @property
    def is_configured(self) -> bool:
        return self._engine is not None

    @property
    def is_connected(self) -> bool:
        return self._cell.status is ConnectionStatus.CONNECTED

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started_at

    def status(self) -> ConnectionSnapshot:
        """Return a snapshot of the connection state."""
        return self._cell.snapshot()

    # ---- pool events -------------------------------------------------------

    def _attach_pool_events(self, engine: sa.Engine) -> None:
        event.listen(engine, "connect", self._on_pool_connect)
        event.listen(engine, "invalidate", self._on_pool_invalidate)
        event.listen(engine, "handle_error", self._on_engine_error)

    def _on_pool_connect(self, _dbapi_connection: object, _record: object) -> None:
        self._logger.info("New database connection established")
        self._cell.mark_connected("pool-connect")

    def _on_pool_invalidate(
        self, _dbapi_connection: object, _record: object, exception: BaseException | None
    ) -> None:
        reason = describe_error(exception) if exception is not None else "connection invalidated"
        self._logger.error("Database connection invalidated: %s", reason)
        self._cell.mark_disconnected("pool-invalidate", reason)

    def _on_engine_error(self, context: ExceptionContext) -> None:
        if context.is_disconnect:
            reason = describe_error(context.original_exception)
            self._logger.error("Unexpected database error: %s", reason)
            self._cell.mark_disconnected("pool-error", reason)

    # ---- probes ------------------------------------------------------------

    def _validate_sync(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(sa.text(VALIDATION_QUERY))

    def _count_sync(self) -> int:
        stmt = sa.select(sa.func.count()).select_from(_status_table(self.settings.status_table))
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    async def _attempt(self, source: str) -> bool:
        """One application-level connection attempt; updates status either way."""
        try:
            await asyncio.to_thread(self._validate_sync)
        except asyncio.CancelledError:
            self._cell.mark_disconnected(source, "attempt cancelled or timed out")
            raise
        except (SQLAlchemyError, OSError) as exc:
            self._cell.mark_disconnected(source, describe_error(exc))
            raise
        self._cell.mark_connected(source)
        return True

    async def probe(self, source: str = "probe", policy: ReadinessPolicy | None = None) -> bool:
        """Run a single validation query under the policy's attempt timeout.

        Every retry loop goes through here, so each attempt updates the status
        cell the same way.

        Args:
            source: Label recorded in the status cell
            policy: Policy supplying the attempt timeout (connect policy by default)

        Raises:
            SQLAlchemyError: If the database rejects the connection or query
            OSError: On network failures surfaced by the driver
            TimeoutError: If the attempt exceeds its timeout
        """
        policy = policy or self._connect_policy
        return await asyncio.wait_for(self._attempt(source), timeout=policy.attempt_timeout)

    async def connect_with_retry(self, policy: ReadinessPolicy | None = None) -> bool:
        """Initial bounded connection retry. Never raises for transient failures."""
        policy = policy or self._connect_policy
        self._cell.mark_probing()
        self._logger.info("Testing database connection before serving dependent requests…")

        async def _probe() -> bool:
            return await self.probe(policy.name, policy)

        outcome = await run_probe_loop(_probe, policy)
        if outcome.ok:
            self._logger.info("Successfully connected to the database")
        else:
            self._cell.mark_timed_out()
            self._logger.warning(
                "Failed to connect to database after %d attempt(s): %s",
                outcome.attempts,
                outcome.last_error,
            )
        return outcome.ok

    async def query_dependency(self) -> DbStatusResult | DbStatusError:
        """Fresh on-demand status probe; never served from cached state."""
        settings = self.settings
        timeout = self._connect_policy.attempt_timeout
        try:
            count = await asyncio.wait_for(asyncio.to_thread(self._count_sync), timeout=timeout)
        except TimeoutError as exc:
            message = f"database status probe timed out after {timeout:g}s"
            self._cell.mark_disconnected("status-query", message)
            self._logger.error("Database status probe failed: %s", message)
            return DbStatusResultBuilder.failure(settings, exc, message=message)
        except (SQLAlchemyError, OSError) as exc:
            self._logger.error("Database status probe failed: %s", describe_error(exc))
            # A reachable database answering with a query error keeps its status
            if is_connectivity_error(exc):
                self._cell.mark_disconnected("status-query", describe_error(exc))
            return DbStatusResultBuilder.failure(settings, exc)
        self._cell.mark_connected("status-query")
        return DbStatusResultBuilder.success(settings, count)

    def liveness(self) -> LivenessResult:
        """Liveness from state only: never touches the pool."""
        return LivenessResultBuilder.build(self._cell.snapshot(), self.uptime_seconds)

    # ---- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Schedule startup connection work exactly once without blocking."""
        if self._stopped:
            self._logger.warning("Connection manager stopped; not restarting")
            return
        if self._startup_task is not None:
            self._logger.debug("Startup already scheduled; skipping start")
            return
        if self._engine is None:
            msg = "DatabaseConnectionManager is not configured"
            raise RuntimeError(msg)
        marker_path = self.settings.startup_marker
        if marker_path is not None:
            try:
                CompletionMarker(marker_path).clear()
            except OSError as exc:
                self._logger.warning("Could not clear stale startup marker %s: %s", marker_path, exc)
        self._stop_event = asyncio.Event()
        self._startup_task = asyncio.create_task(self._run_startup(), name="tiergate-startup")

    async def wait_started(self) -> None:
        """Await the startup phase (initial retry loop and marker)."""
        if self._startup_task is not None:
            await asyncio.shield(self._startup_task)

    async def _run_startup(self) -> None:
        connected = await self.connect_with_retry()
        if not connected:
            self._logger.warning(
                "Serving without a database connection; retrying in background every %.1fs",
                self._background_policy.interval,
            )
        self.start_background_reconnection()
        marker_path = self.settings.startup_marker
        if marker_path is not None:
            try:
                CompletionMarker(marker_path).write()
            except OSError as exc:
                self._logger.warning("Could not write startup marker %s: %s", marker_path, exc)

    def start_background_reconnection(
        self, policy: ReadinessPolicy | None = None
    ) -> asyncio.Task[None]:
        """Spawn the background reconnection loop bound to the stop event."""
        if self._background_task is not None and not self._background_task.done():
            return self._background_task
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        policy = policy or self._background_policy
        self._background_task = asyncio.create_task(
            self._reconnect_forever(policy, self._stop_event), name="tiergate-reconnect"
        )
        return self._background_task

    async def background_tick(self, policy: ReadinessPolicy | None = None) -> bool:
        """Run one background tick and return whether the database answered.

        While connected the tick re-validates the pool, so connections dropped
        while idle are noticed; otherwise it makes one reconnection attempt.
        Failures are logged at DEBUG and never raised.
        """
        policy = policy or self._background_policy
        was_connected = self._cell.status is ConnectionStatus.CONNECTED
        source = "background-check" if was_connected else "background"
        if not was_connected:
            self._logger.debug("Background database reconnection attempt…")
            self._cell.mark_reconnecting(source)
        try:
            await self.probe(source, policy)
        except Exception as exc:  # noqa: BLE001 - best-effort, retried next tick
            self._logger.debug("%s attempt failed: %s", source, describe_error(exc))
            return False
        if not was_connected:
            self._logger.info("Database connection restored by background reconnection")
        return True

    async def _reconnect_forever(self, policy: ReadinessPolicy, stop: asyncio.Event) -> None:
        self._logger.debug("Background reconnection running every %.1fs", policy.interval)
        while not stop.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=policy.interval)
            if stop.is_set():
                break
            await self.background_tick(policy)
        self._logger.debug("Background reconnection stopped")

    async def shutdown(self) -> None:
        """Stop retry loops and dispose the pool."""
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()
        for task in (self._startup_task, self._background_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._startup_task = None
        self._background_task = None
        if self._engine is not None:
            try:
                self._logger.info("Closing database pool…")
                self._engine.dispose()
            except (SQLAlchemyError, OSError) as exc:
                self._logger.warning("Error during database pool shutdown: %s", exc)
        self._cell.mark_disconnected("shutdown")
