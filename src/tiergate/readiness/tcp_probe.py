"""Pre-flight reachability gate.

A bare TCP connect-and-close against the database address. It only proves
something is listening on the port; protocol-level readiness is left to the
application's own connection retry.
"""

from __future__ import annotations

import asyncio
import contextlib

from fastmcp.utilities.logging import get_logger

from tiergate.models import ProbeReport
from tiergate.readiness.policy import ProbeOutcome, ReadinessPolicy, Sleeper, run_probe_loop

_logger = get_logger(__name__)


async def tcp_connect(host: str, port: int, timeout: float) -> bool:
    """Open and immediately close a TCP connection.

    Raises:
        OSError: If the connection is refused or the host is unreachable.
        TimeoutError: If the connection does not complete within `timeout`.
    """
    _reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


async def is_reachable(host: str, port: int, timeout: float = 2.0) -> bool:
    """Single-shot reachability check used by diagnostics."""
    try:
        return await tcp_connect(host, port, timeout)
    except (OSError, TimeoutError):
        return False


async def wait_for_tcp(
    host: str,
    port: int,
    policy: ReadinessPolicy,
    *,
    sleep: Sleeper | None = None,
) -> ProbeOutcome:
    """Poll `host:port` until it accepts a connection or the budget is spent.

    Never raises for an unreachable dependency: the caller decides what a
    `False` outcome means, and the web tier starts regardless.
    """
    _logger.info(
        "Waiting for %s:%d (budget %s, every %.1fs)", host, port, policy.describe_total(), policy.interval
    )

    async def _probe() -> bool:
        return await tcp_connect(host, port, policy.attempt_timeout)

    outcome = await run_probe_loop(_probe, policy, sleep=sleep or asyncio.sleep)
    if outcome.ok:
        _logger.info("Database is reachable at %s:%d", host, port)
    else:
        _logger.warning(
            "Database not reachable at %s:%d after %d attempt(s); starting anyway",
            host,
            port,
            outcome.attempts,
        )
    return outcome


def report_for(host: str, port: int, outcome: ProbeOutcome) -> ProbeReport:
    """Build the JSON report printed by the `gate` command."""
    return ProbeReport(
        target=f"{host}:{port}",
        state=outcome.state.value,
        ok=outcome.ok,
        attempts=outcome.attempts,
        elapsed_seconds=round(outcome.elapsed, 3),
        last_error=outcome.last_error,
    )
