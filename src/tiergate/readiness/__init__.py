"""Readiness primitives shared by both tiers.

Exports the policy value type, the shared retry loop, the TCP and command
probes, and completion markers.
"""

from __future__ import annotations

from .command_probe import ReadinessMarkers, wait_for_command
from .marker import CompletionMarker
from .policy import (
    Backoff,
    ExhaustionBehavior,
    ProbeOutcome,
    ReadinessPolicy,
    ReadinessState,
    run_probe_loop,
)
from .tcp_probe import is_reachable, wait_for_tcp

__all__ = [
    "Backoff",
    "CompletionMarker",
    "ExhaustionBehavior",
    "ProbeOutcome",
    "ReadinessMarkers",
    "ReadinessPolicy",
    "ReadinessState",
    "is_reachable",
    "run_probe_loop",
    "wait_for_command",
    "wait_for_tcp",
]
