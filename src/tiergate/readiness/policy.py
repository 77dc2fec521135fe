"""Readiness policies and the shared bounded-retry loop.

Every waiting phase in tiergate (dependency readiness probe, pre-flight TCP
gate, initial connection retry, background reconnection) is described by a
`ReadinessPolicy` and driven by `run_probe_loop`, so budgets, intervals and
the degrade-vs-fail decision are stated once per phase instead of being
re-implemented per loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
import logging
import time

from fastmcp.utilities.logging import get_logger

from tiergate.exceptions import PermanentProbeError, ReadinessTimeoutError, describe_error

_logger = get_logger(__name__)

Probe = Callable[[], Awaitable[object]]
Sleeper = Callable[[float], Awaitable[None]]


class ReadinessState(Enum):
    """Readiness of a dependency as seen by a probing loop."""

    UNKNOWN = "unknown"
    PROBING = "probing"
    READY = "ready"
    TIMED_OUT = "timed_out"
    LOST = "lost"


class Backoff(Enum):
    """Delay growth between attempts."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class ExhaustionBehavior(Enum):
    """What happens when a bounded policy runs out of budget."""

    DEGRADE = "degrade"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class ReadinessPolicy:
    """Immutable retry budget for one readiness phase.

    A policy with neither `max_attempts` nor `max_wait` is unbounded. The
    `max_wait` budget is consumed by the delays slept between attempts.
    """

    name: str
    interval: float
    attempt_timeout: float
    max_attempts: int | None = None
    max_wait: float | None = None
    backoff: Backoff = Backoff.FIXED
    max_interval: float | None = None
    on_exhausted: ExhaustionBehavior = ExhaustionBehavior.DEGRADE

    def __post_init__(self) -> None:
        if self.interval < 0:
            msg = f"{self.name}: interval must be >= 0"
            raise ValueError(msg)
        if self.attempt_timeout <= 0:
            msg = f"{self.name}: attempt_timeout must be > 0"
            raise ValueError(msg)
        if self.max_attempts is not None and self.max_attempts < 1:
            msg = f"{self.name}: max_attempts must be >= 1"
            raise ValueError(msg)
        if self.max_wait is not None and self.max_wait < 0:
            msg = f"{self.name}: max_wait must be >= 0"
            raise ValueError(msg)

    @property
    def bounded(self) -> bool:
        return self.max_attempts is not None or self.max_wait is not None

    def delay_for(self, attempt: int) -> float:
        """Delay to sleep after failed attempt number `attempt` (1-based)."""
        if self.backoff is Backoff.FIXED:
            return self.interval
        delay = self.interval * (2 ** max(attempt - 1, 0))
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay

    def allows_retry(self, attempt: int, waited: float) -> bool:
        """Return True when another attempt may follow failed attempt `attempt`."""
        if self.max_attempts is not None and attempt >= self.max_attempts:
            return False
        if self.max_wait is not None and waited + self.delay_for(attempt) >= self.max_wait:
            return False
        return True

    def describe_total(self) -> str:
        if self.max_attempts is not None:
            return str(self.max_attempts)
        if self.max_wait is not None:
            return f"{self.max_wait:g}s"
        return "unbounded"

    def with_overrides(self, **changes: object) -> ReadinessPolicy:
        """Return a copy with the given fields replaced (None values ignored)."""
        effective = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **effective)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class ProbeOutcome:
    """Result of a probe loop."""

    ok: bool
    attempts: int
    elapsed: float
    last_error: str | None = None
    permanent: bool = False

    @property
    def state(self) -> ReadinessState:
        return ReadinessState.READY if self.ok else ReadinessState.TIMED_OUT


async def run_probe_loop(
    probe: Probe,
    policy: ReadinessPolicy,
    *,
    failure_level: int = logging.WARNING,
    sleep: Sleeper = asyncio.sleep,
) -> ProbeOutcome:
    """Run `probe` under `policy` until it succeeds or the budget is spent.

    A probe attempt succeeds when it returns a truthy value within the
    policy's per-attempt timeout. Failures are logged and swallowed; only a
    `fail` policy raises, and only after exhaustion.

    Raises:
        ReadinessTimeoutError: If the budget is exhausted and the policy's
            `on_exhausted` is `fail`.
    """
    started = time.monotonic()
    waited = 0.0
    attempt = 0
    last_error: str | None = None
    total = policy.describe_total()

    while True:
        attempt += 1
        try:
            result = await asyncio.wait_for(probe(), timeout=policy.attempt_timeout)
        except PermanentProbeError as exc:
            last_error = describe_error(exc)
            _logger.error(
                "%s: attempt %d/%s failed permanently: %s", policy.name, attempt, total, last_error
            )
            return _exhausted(policy, attempt, started, last_error, permanent=True)
        except TimeoutError:
            last_error = f"attempt timed out after {policy.attempt_timeout:g}s"
            _logger.log(failure_level, "%s: attempt %d/%s %s", policy.name, attempt, total, last_error)
        except Exception as exc:  # noqa: BLE001 - transient failures must not propagate
            last_error = describe_error(exc)
            _logger.log(
                failure_level, "%s: attempt %d/%s failed: %s", policy.name, attempt, total, last_error
            )
        else:
            if result:
                elapsed = time.monotonic() - started
                _logger.info("%s: ready after %d attempt(s) (%.1fs)", policy.name, attempt, elapsed)
                return ProbeOutcome(ok=True, attempts=attempt, elapsed=elapsed)
            last_error = "probe reported not ready"
            _logger.log(
                failure_level, "%s: attempt %d/%s not ready", policy.name, attempt, total
            )

        if not policy.allows_retry(attempt, waited):
            return _exhausted(policy, attempt, started, last_error)

        delay = policy.delay_for(attempt)
        _logger.debug("%s: retrying in %.1fs", policy.name, delay)
        await sleep(delay)
        waited += delay


def _exhausted(
    policy: ReadinessPolicy,
    attempts: int,
    started: float,
    last_error: str | None,
    *,
    permanent: bool = False,
) -> ProbeOutcome:
    elapsed = time.monotonic() - started
    if policy.on_exhausted is ExhaustionBehavior.FAIL:
        msg = f"{policy.name}: not ready after {attempts} attempt(s): {last_error}"
        raise ReadinessTimeoutError(msg)
    _logger.warning(
        "%s: not ready after %d attempt(s) (%.1fs); continuing degraded",
        policy.name,
        attempts,
        elapsed,
    )
    return ProbeOutcome(
        ok=False, attempts=attempts, elapsed=elapsed, last_error=last_error, permanent=permanent
    )
