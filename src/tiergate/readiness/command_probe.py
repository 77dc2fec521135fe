"""Dependency readiness probe.

Runs on the database tier: polls a local control command (by default
`pg_isready -q`) until it exits successfully or the budget is spent, then
records readiness with completion markers. A timeout is a warning, not a
failure: the web tier carries its own retry loop as a second line of defence.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import contextlib
from dataclasses import dataclass

from fastmcp.utilities.logging import get_logger

from tiergate.exceptions import PermanentProbeError
from tiergate.models import ProbeReport
from tiergate.readiness.marker import CompletionMarker
from tiergate.readiness.policy import ProbeOutcome, ReadinessPolicy, Sleeper, run_probe_loop

_logger = get_logger(__name__)

DEFAULT_READINESS_COMMAND: tuple[str, ...] = ("pg_isready", "-q")


async def run_command(argv: Sequence[str], timeout: float) -> bool:
    """Run `argv` once and report whether it exited with status 0.

    Raises:
        PermanentProbeError: If the command cannot be executed at all.
        TimeoutError: If the command does not finish within `timeout`.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as exc:
        msg = f"control command {argv[0]!r} cannot be executed: {exc}"
        raise PermanentProbeError(msg) from exc

    try:
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise

    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
        _logger.debug("%s exited with %s %s", argv[0], proc.returncode, detail)
        return False
    return True


@dataclass(frozen=True, slots=True)
class ReadinessMarkers:
    """Markers written by the readiness phase.

    `ready` is written only when the dependency answered; `complete` is
    written whenever the phase ends.
    """

    ready: CompletionMarker | None = None
    complete: CompletionMarker | None = None


async def wait_for_command(
    argv: Sequence[str],
    policy: ReadinessPolicy,
    *,
    markers: ReadinessMarkers | None = None,
    sleep: Sleeper | None = None,
) -> ProbeOutcome:
    """Poll the control command under `policy` and record the outcome."""
    if not argv:
        msg = "readiness command must not be empty"
        raise ValueError(msg)
    markers = markers or ReadinessMarkers()
    # Markers left by a previous run must not report this run as finished
    for marker in (markers.ready, markers.complete):
        if marker is not None:
            marker.clear()

    _logger.info("Waiting for dependency readiness via %r", " ".join(argv))

    async def _probe() -> bool:
        return await run_command(argv, policy.attempt_timeout)

    outcome = await run_probe_loop(_probe, policy, sleep=sleep or asyncio.sleep)
    if outcome.ok:
        _logger.info("Dependency is ready")
        if markers.ready is not None:
            markers.ready.write()
    elif outcome.permanent:
        _logger.error("Dependency readiness cannot be determined: %s", outcome.last_error)
    else:
        _logger.warning(
            "Dependency not ready after %d attempt(s); proceeding anyway", outcome.attempts
        )

    if markers.complete is not None:
        markers.complete.write()
    return outcome


def report_for(argv: Sequence[str], outcome: ProbeOutcome) -> ProbeReport:
    """Build the JSON report printed by the `wait-ready` command."""
    return ProbeReport(
        target=" ".join(argv),
        state=outcome.state.value,
        ok=outcome.ok,
        attempts=outcome.attempts,
        elapsed_seconds=round(outcome.elapsed, 3),
        last_error=outcome.last_error,
        permanent=outcome.permanent,
    )
