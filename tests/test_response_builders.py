from __future__ import annotations

from tiergate.builders.response_builders import DbStatusResultBuilder, LivenessResultBuilder
from tiergate.readiness.policy import ReadinessState
from tiergate.services.config_service import AppSettings
from tiergate.services.state import ConnectionSnapshot, ConnectionStatus


def test_reconnecting_is_reported_disconnected() -> None:
    snap = ConnectionSnapshot(status=ConnectionStatus.RECONNECTING, readiness=ReadinessState.LOST)
    result = LivenessResultBuilder.build(snap, uptime_seconds=12.5)
    assert result.database == "disconnected"
    assert result.readiness == "lost"
    assert result.uptime_seconds == 12.5
    assert result.timestamp.endswith("+00:00")
    assert result.runtime


def test_failure_payload_carries_connection_details(settings: AppSettings) -> None:
    err = DbStatusResultBuilder.failure(settings, ConnectionRefusedError(111, "Connection refused"))
    assert err.connected is False
    assert err.classification == "connection_refused"
    assert err.error
    assert (err.host, err.port, err.database) == ("127.0.0.1", 5432, "app")


def test_failure_message_override(settings: AppSettings) -> None:
    err = DbStatusResultBuilder.failure(settings, TimeoutError(), message="probe timed out after 10s")
    assert err.error == "probe timed out after 10s"
    assert err.classification == "timeout"
