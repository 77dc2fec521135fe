from __future__ import annotations

import asyncio
from pathlib import Path
import sys

import pytest

from tiergate.readiness import command_probe
from tiergate.readiness.command_probe import ReadinessMarkers
from tiergate.readiness.marker import CompletionMarker
from tiergate.readiness.policy import ReadinessPolicy

_OK = [sys.executable, "-c", "pass"]
_NOT_READY = [sys.executable, "-c", "import sys; sys.exit(2)"]


def _policy(**kwargs: object) -> ReadinessPolicy:
    defaults: dict[str, object] = {"name": "db-readiness", "interval": 0.0, "attempt_timeout": 10.0}
    defaults.update(kwargs)
    return ReadinessPolicy(**defaults)  # type: ignore[arg-type]


def _markers(tmp_path: Path) -> ReadinessMarkers:
    return ReadinessMarkers(
        ready=CompletionMarker.at(tmp_path / "db-ready.marker"),
        complete=CompletionMarker.at(tmp_path / "db-startup-complete.marker"),
    )


def test_ready_command_writes_both_markers(tmp_path: Path) -> None:
    markers = _markers(tmp_path)
    outcome = asyncio.run(command_probe.wait_for_command(_OK, _policy(max_wait=30), markers=markers))
    assert outcome.ok
    assert outcome.attempts == 1
    assert markers.ready is not None and markers.ready.exists()
    assert markers.complete is not None and markers.complete.exists()


def test_not_ready_command_still_completes_phase(tmp_path: Path) -> None:
    markers = _markers(tmp_path)
    assert markers.ready is not None
    markers.ready.write()  # stale marker from a previous boot

    outcome = asyncio.run(
        command_probe.wait_for_command(_NOT_READY, _policy(max_attempts=2), markers=markers)
    )
    assert not outcome.ok
    assert outcome.attempts == 2
    assert not outcome.permanent
    assert not markers.ready.exists()
    assert markers.complete is not None and markers.complete.exists()


def test_missing_command_is_permanent(tmp_path: Path) -> None:
    markers = _markers(tmp_path)
    argv = ["tiergate-no-such-control-command", "-q"]
    outcome = asyncio.run(
        command_probe.wait_for_command(argv, _policy(max_attempts=30), markers=markers)
    )
    assert not outcome.ok
    assert outcome.permanent
    assert outcome.attempts == 1
    assert markers.complete is not None and markers.complete.exists()

    report = command_probe.report_for(argv, outcome)
    assert report.permanent
    assert report.target == "tiergate-no-such-control-command -q"


def test_hanging_command_is_killed_on_timeout() -> None:
    argv = [sys.executable, "-c", "import time; time.sleep(30)"]
    with pytest.raises(TimeoutError):
        asyncio.run(command_probe.run_command(argv, timeout=0.2))


def test_empty_command_is_rejected() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        asyncio.run(command_probe.wait_for_command([], _policy(max_attempts=1)))


def test_stale_completion_marker_is_cleared_while_phase_runs(tmp_path: Path) -> None:
    markers = _markers(tmp_path)
    assert markers.complete is not None
    markers.complete.write()  # left over from a previous boot
    seen_during_wait: list[bool] = []

    async def record_marker(_delay: float) -> None:
        assert markers.complete is not None
        seen_during_wait.append(markers.complete.exists())

    outcome = asyncio.run(
        command_probe.wait_for_command(
            _NOT_READY, _policy(max_attempts=3), markers=markers, sleep=record_marker
        )
    )
    assert not outcome.ok
    assert seen_during_wait == [False, False]
    assert markers.complete.exists()
