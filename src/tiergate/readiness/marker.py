"""Completion markers: existence-only files signalling a finished startup phase."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import time

from fastmcp.utilities.logging import get_logger

_logger = get_logger(__name__)

DEFAULT_WEB_MARKER = Path("/var/log/web-startup-complete.marker")
DEFAULT_DB_MARKER = Path("/var/log/db-startup-complete.marker")


@dataclass(frozen=True, slots=True)
class CompletionMarker:
    """A durable "phase finished" fact stored as the mere existence of a file.

    The file carries no content. Absence after the expected budget tells
    diagnostics the phase is stuck or crashed before finishing.
    """

    path: Path

    @classmethod
    def at(cls, path: str | Path) -> CompletionMarker:
        return cls(Path(path))

    def write(self) -> None:
        """Create the marker (idempotent)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
        _logger.info("Completion marker created: %s", self.path)

    def exists(self) -> bool:
        return self.path.exists()

    def clear(self) -> None:
        """Remove the marker so a rerun of the phase starts from 'not finished'."""
        self.path.unlink(missing_ok=True)

    def age_seconds(self) -> float | None:
        """Seconds since the marker was written, or None when absent."""
        try:
            return max(0.0, time.time() - self.path.stat().st_mtime)
        except FileNotFoundError:
            return None
