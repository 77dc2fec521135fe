"""tiergate: readiness coordination between a web tier and its database tier.

Provides a bounded-retry connectivity gate, a connection manager that keeps a
web service answering while its database comes and goes, and the health
surface used by monitoring and deployment verification.
"""

from tiergate.exceptions import (
    MisconfigurationError,
    PermanentProbeError,
    ReadinessTimeoutError,
    TierGateError,
)
from tiergate.models import DbStatusError, DbStatusResult, LivenessResult, ProbeReport
from tiergate.readiness import CompletionMarker, ReadinessPolicy, ReadinessState
from tiergate.services import (
    AppSettings,
    ConfigService,
    ConnectionStatus,
    DatabaseConnectionManager,
)

__all__ = [  # noqa: RUF022
    # Models
    "DbStatusError",
    "DbStatusResult",
    "LivenessResult",
    "ProbeReport",
    # Readiness
    "CompletionMarker",
    "ReadinessPolicy",
    "ReadinessState",
    # Services
    "AppSettings",
    "ConfigService",
    "ConnectionStatus",
    "DatabaseConnectionManager",
    # Errors
    "MisconfigurationError",
    "PermanentProbeError",
    "ReadinessTimeoutError",
    "TierGateError",
]
