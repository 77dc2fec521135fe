"""Typed connection state for the database connection manager.

Internal module providing the readiness/connection enums and the single
synchronized cell that owns them. Request handlers, retry loops and pool
event callbacks all go through the cell; nothing else holds this state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
import threading
import time
from typing import Final

from tiergate.readiness.policy import ReadinessState


class ConnectionStatus(Enum):
    """Live connection status of the dependency."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Point-in-time view of the connection cell."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    readiness: ReadinessState = ReadinessState.UNKNOWN
    changed_at: float | None = None
    last_success_at: float | None = None
    last_error: str | None = None
    source: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


# Readiness values that a successful connection may move to READY
RECOVERABLE_READINESS: Final[set[ReadinessState]] = {
    ReadinessState.UNKNOWN,
    ReadinessState.PROBING,
    ReadinessState.LOST,
}


class ConnectionStatusCell:
    """Owned, lock-guarded connection state with narrow update operations.

    SQLAlchemy pool events fire from worker threads, so every transition
    takes the lock. Writers never merge: the last transition wins.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = ConnectionSnapshot()

    def snapshot(self) -> ConnectionSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def status(self) -> ConnectionStatus:
        return self.snapshot().status

    def mark_probing(self) -> None:
        """Enter the initial probing phase (startup only)."""
        with self._lock:
            if self._snapshot.readiness is ReadinessState.UNKNOWN:
                self._snapshot = replace(self._snapshot, readiness=ReadinessState.PROBING)

    def mark_connected(self, source: str) -> ConnectionSnapshot:
        now = time.time()
        with self._lock:
            readiness = self._snapshot.readiness
            if readiness in RECOVERABLE_READINESS:
                readiness = ReadinessState.READY
            self._snapshot = replace(
                self._snapshot,
                status=ConnectionStatus.CONNECTED,
                readiness=readiness,
                changed_at=now,
                last_success_at=now,
                last_error=None,
                source=source,
            )
            return self._snapshot

    def mark_disconnected(self, source: str, error: str | None = None) -> ConnectionSnapshot:
        with self._lock:
            readiness = self._snapshot.readiness
            if readiness is ReadinessState.READY:
                readiness = ReadinessState.LOST
            self._snapshot = replace(
                self._snapshot,
                status=ConnectionStatus.DISCONNECTED,
                readiness=readiness,
                changed_at=time.time(),
                last_error=error,
                source=source,
            )
            return self._snapshot

    def mark_reconnecting(self, source: str) -> ConnectionSnapshot:
        with self._lock:
            if self._snapshot.status is not ConnectionStatus.CONNECTED:
                self._snapshot = replace(
                    self._snapshot,
                    status=ConnectionStatus.RECONNECTING,
                    changed_at=time.time(),
                    source=source,
                )
            return self._snapshot

    def mark_timed_out(self) -> ConnectionSnapshot:
        """Close the startup phase without a connection."""
        with self._lock:
            if self._snapshot.readiness in {ReadinessState.UNKNOWN, ReadinessState.PROBING}:
                self._snapshot = replace(self._snapshot, readiness=ReadinessState.TIMED_OUT)
            return self._snapshot
