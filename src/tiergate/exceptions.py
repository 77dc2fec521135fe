"""Custom exception hierarchy and dependency error classification.

Two failure classes are kept apart throughout tiergate:

- Transient unavailability: the database is not ready yet. Handled by
  retry loops, reported as "unavailable" and never escalated.
- Misconfiguration: required connection parameters are missing or invalid.
  Fatal at startup and never retried.
"""

from __future__ import annotations

from dataclasses import dataclass
import errno

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class TierGateError(Exception):
    """Base exception for tiergate operations."""


class MisconfigurationError(TierGateError, ValueError):
    """Raised when required configuration is missing or invalid.

    This is not a transient-availability failure: the process must not start.
    """


class ReadinessTimeoutError(TierGateError):
    """Raised when a readiness policy configured to fail is exhausted."""


class PermanentProbeError(TierGateError):
    """Raised by a probe that can never succeed, e.g. a missing control command.

    Retry loops stop immediately instead of waiting out their budget.
    """


# SQLSTATE codes worth naming in status responses
_SQLSTATE_CLASSIFICATION: dict[str, str] = {
    "28000": "authentication_failed",
    "28P01": "authentication_failed",
    "3D000": "unknown_database",
    "42P01": "undefined_table",
    "57P03": "starting_up",
    "53300": "too_many_connections",
}

_ERRNO_CLASSIFICATION: dict[int, str] = {
    errno.ECONNREFUSED: "connection_refused",
    errno.EHOSTUNREACH: "host_unreachable",
    errno.ENETUNREACH: "host_unreachable",
    errno.ETIMEDOUT: "timeout",
}

_MESSAGE_HINTS: tuple[tuple[str, str], ...] = (
    ("connection refused", "connection_refused"),
    ("timeout expired", "timeout"),
    ("timed out", "timeout"),
    ("no route to host", "host_unreachable"),
    ("could not translate host name", "host_unreachable"),
    ("name or service not known", "host_unreachable"),
    ("password authentication failed", "authentication_failed"),
    ("does not exist", "unknown_database"),
    ("the database system is starting up", "starting_up"),
    ("no such table", "undefined_table"),
)


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    """Stable, human-diagnosable description of a dependency failure."""

    classification: str
    code: str | None = None


def _sqlstate(exc: BaseException) -> str | None:
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    # psycopg 3 exposes `sqlstate`, psycopg2 exposes `pgcode`
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return str(code) if code else None


def _walk_chain(exc: BaseException) -> list[BaseException]:
    seen: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in seen:
        seen.append(current)
        orig = getattr(current, "orig", None)
        if isinstance(orig, BaseException) and orig not in seen:
            seen.append(orig)
        current = current.__cause__ or current.__context__
    return seen


def classify_error(exc: BaseException) -> ErrorClassification:
    """Map a dependency failure to a classification and optional SQLSTATE code."""
    code = _sqlstate(exc)
    if code and code in _SQLSTATE_CLASSIFICATION:
        return ErrorClassification(_SQLSTATE_CLASSIFICATION[code], code)

    for item in _walk_chain(exc):
        if isinstance(item, (TimeoutError, PoolTimeoutError)):
            return ErrorClassification("timeout", code)
        if isinstance(item, OSError) and item.errno in _ERRNO_CLASSIFICATION:
            return ErrorClassification(_ERRNO_CLASSIFICATION[item.errno], code)

    message = str(exc).lower()
    for hint, classification in _MESSAGE_HINTS:
        if hint in message:
            return ErrorClassification(classification, code)

    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return ErrorClassification("connection_lost", code)
        kind = "operational" if type(exc).__name__ == "OperationalError" else "database_error"
        return ErrorClassification(kind, code)
    if isinstance(exc, SQLAlchemyError):
        return ErrorClassification("database_error", code)
    if isinstance(exc, OSError):
        return ErrorClassification("network_error", code)
    return ErrorClassification("unknown", code)


def describe_error(exc: BaseException) -> str:
    """Render an exception as 'TypeName: message' for logs and status payloads."""
    text = str(exc).strip()
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


# Classifications meaning the database itself could not be reached or used
CONNECTIVITY_CLASSIFICATIONS: frozenset[str] = frozenset(
    {
        "timeout",
        "connection_refused",
        "host_unreachable",
        "authentication_failed",
        "unknown_database",
        "starting_up",
        "too_many_connections",
        "connection_lost",
        "operational",
        "network_error",
    }
)


def is_connectivity_error(exc: BaseException) -> bool:
    """Return True when `exc` means the database connection is unusable.

    Schema and query errors (e.g. a missing status table) come from a reachable
    database and return False.
    """
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return classify_error(exc).classification in CONNECTIVITY_CLASSIFICATIONS
