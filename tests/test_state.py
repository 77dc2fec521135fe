from __future__ import annotations

import threading

from tiergate.readiness.policy import ReadinessState
from tiergate.services.state import ConnectionStatus, ConnectionStatusCell


def test_initial_snapshot_is_disconnected_unknown() -> None:
    snap = ConnectionStatusCell().snapshot()
    assert snap.status is ConnectionStatus.DISCONNECTED
    assert snap.readiness is ReadinessState.UNKNOWN
    assert not snap.is_connected


def test_startup_success_path() -> None:
    cell = ConnectionStatusCell()
    cell.mark_probing()
    assert cell.snapshot().readiness is ReadinessState.PROBING
    snap = cell.mark_connected("initial-connect")
    assert snap.status is ConnectionStatus.CONNECTED
    assert snap.readiness is ReadinessState.READY
    assert snap.last_success_at is not None
    assert snap.source == "initial-connect"


def test_lost_connection_recovers_to_ready() -> None:
    cell = ConnectionStatusCell()
    cell.mark_connected("probe")
    lost = cell.mark_disconnected("pool-invalidate", "server closed the connection")
    assert lost.readiness is ReadinessState.LOST
    assert lost.last_error == "server closed the connection"
    assert cell.mark_reconnecting("background").status is ConnectionStatus.RECONNECTING
    back = cell.mark_connected("background")
    assert back.readiness is ReadinessState.READY
    assert back.last_error is None


def test_timed_out_readiness_is_kept_after_late_connect() -> None:
    cell = ConnectionStatusCell()
    cell.mark_probing()
    assert cell.mark_timed_out().readiness is ReadinessState.TIMED_OUT
    snap = cell.mark_connected("background")
    assert snap.status is ConnectionStatus.CONNECTED
    assert snap.readiness is ReadinessState.TIMED_OUT
    # a later timeout does not overwrite anything past probing
    cell.mark_timed_out()
    assert cell.snapshot().readiness is ReadinessState.TIMED_OUT


def test_reconnecting_never_overrides_connected() -> None:
    cell = ConnectionStatusCell()
    cell.mark_connected("probe")
    assert cell.mark_reconnecting("background").status is ConnectionStatus.CONNECTED


def test_probing_only_from_unknown() -> None:
    cell = ConnectionStatusCell()
    cell.mark_connected("probe")
    cell.mark_probing()
    assert cell.snapshot().readiness is ReadinessState.READY


def test_last_writer_wins_under_concurrency() -> None:
    cell = ConnectionStatusCell()

    def flip(n: int) -> None:
        for _ in range(200):
            if n % 2:
                cell.mark_connected(f"t{n}")
            else:
                cell.mark_disconnected(f"t{n}", "boom")

    threads = [threading.Thread(target=flip, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    cell.mark_disconnected("final", "done")
    snap = cell.snapshot()
    assert snap.status is ConnectionStatus.DISCONNECTED
    assert snap.source == "final"
