from __future__ import annotations

import asyncio

import pytest

from tiergate.exceptions import PermanentProbeError, ReadinessTimeoutError
from tiergate.readiness.policy import (
    Backoff,
    ExhaustionBehavior,
    ReadinessPolicy,
    ReadinessState,
    run_probe_loop,
)
from tiergate.services.config_service import ConfigService


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _always_failing() -> tuple[list[int], object]:
    calls: list[int] = []

    async def probe() -> bool:
        calls.append(1)
        raise ConnectionRefusedError("Connection refused")

    return calls, probe


def test_policy_validation() -> None:
    with pytest.raises(ValueError, match="interval"):
        ReadinessPolicy(name="p", interval=-1, attempt_timeout=1)
    with pytest.raises(ValueError, match="attempt_timeout"):
        ReadinessPolicy(name="p", interval=1, attempt_timeout=0)
    with pytest.raises(ValueError, match="max_attempts"):
        ReadinessPolicy(name="p", interval=1, attempt_timeout=1, max_attempts=0)
    with pytest.raises(ValueError, match="max_wait"):
        ReadinessPolicy(name="p", interval=1, attempt_timeout=1, max_wait=-5)


def test_bounded_and_describe_total() -> None:
    unbounded = ReadinessPolicy(name="bg", interval=30, attempt_timeout=10)
    assert not unbounded.bounded
    assert unbounded.describe_total() == "unbounded"
    assert ReadinessPolicy(name="c", interval=5, attempt_timeout=10, max_attempts=10).describe_total() == "10"
    assert ReadinessPolicy(name="w", interval=5, attempt_timeout=5, max_wait=120).describe_total() == "120s"


def test_exponential_backoff_is_capped() -> None:
    policy = ReadinessPolicy(
        name="p", interval=1, attempt_timeout=1, backoff=Backoff.EXPONENTIAL, max_interval=4
    )
    assert [policy.delay_for(n) for n in range(1, 6)] == [1, 2, 4, 4, 4]
    assert ReadinessPolicy(name="f", interval=3, attempt_timeout=1).delay_for(7) == 3


def test_with_overrides_ignores_none() -> None:
    policy = ConfigService.preflight_policy()
    same = policy.with_overrides(max_wait=None, interval=None)
    assert same == policy
    changed = policy.with_overrides(max_wait=10.0)
    assert changed.max_wait == 10.0
    assert changed.interval == policy.interval


@pytest.mark.parametrize(
    ("policy", "expected_attempts", "expected_slept"),
    [
        (ConfigService.preflight_policy(), 24, 115.0),
        (ConfigService.db_readiness_policy(), 30, 29.0),
        (ConfigService.connect_policy(), 10, 45.0),
    ],
)
def test_default_budgets(policy: ReadinessPolicy, expected_attempts: int, expected_slept: float) -> None:
    calls, probe = _always_failing()
    sleep = _SleepRecorder()
    outcome = asyncio.run(run_probe_loop(probe, policy, sleep=sleep))  # type: ignore[arg-type]

    assert not outcome.ok
    assert outcome.attempts == expected_attempts
    assert len(calls) == expected_attempts
    # never sleeps after the final attempt
    assert len(sleep.delays) == expected_attempts - 1
    assert sum(sleep.delays) == expected_slept
    assert policy.max_wait is None or sum(sleep.delays) <= policy.max_wait
    assert outcome.state is ReadinessState.TIMED_OUT
    assert "ConnectionRefusedError" in (outcome.last_error or "")


def test_success_on_attempt_n_stops_probing() -> None:
    calls: list[int] = []

    async def probe() -> bool:
        calls.append(1)
        if len(calls) < 4:
            raise OSError("not yet")
        return True

    sleep = _SleepRecorder()
    policy = ReadinessPolicy(name="p", interval=2, attempt_timeout=1, max_attempts=10)
    outcome = asyncio.run(run_probe_loop(probe, policy, sleep=sleep))

    assert outcome.ok
    assert outcome.attempts == 4
    assert len(calls) == 4
    assert sleep.delays == [2, 2, 2]
    assert outcome.state is ReadinessState.READY
    assert outcome.last_error is None


def test_falsy_result_counts_as_not_ready() -> None:
    async def probe() -> bool:
        return False

    policy = ReadinessPolicy(name="p", interval=0, attempt_timeout=1, max_attempts=2)
    outcome = asyncio.run(run_probe_loop(probe, policy, sleep=_SleepRecorder()))
    assert not outcome.ok
    assert outcome.attempts == 2
    assert outcome.last_error == "probe reported not ready"


def test_attempt_timeout_is_a_failed_attempt() -> None:
    async def probe() -> bool:
        await asyncio.sleep(5)
        return True

    policy = ReadinessPolicy(name="p", interval=0, attempt_timeout=0.05, max_attempts=2)
    outcome = asyncio.run(run_probe_loop(probe, policy, sleep=_SleepRecorder()))
    assert not outcome.ok
    assert outcome.attempts == 2
    assert "timed out" in (outcome.last_error or "")


def test_permanent_failure_stops_immediately() -> None:
    calls: list[int] = []

    async def probe() -> bool:
        calls.append(1)
        raise PermanentProbeError("control command missing")

    policy = ReadinessPolicy(name="p", interval=1, attempt_timeout=1, max_attempts=50)
    sleep = _SleepRecorder()
    outcome = asyncio.run(run_probe_loop(probe, policy, sleep=sleep))
    assert not outcome.ok
    assert outcome.permanent
    assert len(calls) == 1
    assert sleep.delays == []


def test_zero_budget_makes_exactly_one_attempt() -> None:
    calls, probe = _always_failing()
    policy = ReadinessPolicy(name="p", interval=5, attempt_timeout=1, max_wait=0)
    outcome = asyncio.run(run_probe_loop(probe, policy, sleep=_SleepRecorder()))  # type: ignore[arg-type]
    assert outcome.attempts == 1
    assert len(calls) == 1


def test_fail_policy_raises_after_exhaustion() -> None:
    _calls, probe = _always_failing()
    policy = ReadinessPolicy(
        name="strict", interval=0, attempt_timeout=1, max_attempts=2, on_exhausted=ExhaustionBehavior.FAIL
    )
    with pytest.raises(ReadinessTimeoutError, match="strict: not ready after 2 attempt"):
        asyncio.run(run_probe_loop(probe, policy, sleep=_SleepRecorder()))  # type: ignore[arg-type]
