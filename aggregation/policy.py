"""
Run Status — Overall Status Policies

Derive a run's overall state from its per-unit states. Purely
deterministic and total over UnitState: every combination of unit
states maps to exactly one overall state.
"""

from __future__ import annotations

from typing import Callable, Iterable

from aggregation.types import PluginStatus, UnitState

StatusPolicy = Callable[[Iterable[PluginStatus]], UnitState]


def derive_overall_state(plugins: Iterable[PluginStatus]) -> UnitState:
    """
    running if any unit is still running, else failed if any unit
    failed, else complete. No units at all derives complete.
    """
    failed = False
    for p in plugins:
        if p.status is UnitState.RUNNING:
            return UnitState.RUNNING
        if p.status is UnitState.FAILED:
            failed = True
    return UnitState.FAILED if failed else UnitState.COMPLETE


def fail_fast(plugins: Iterable[PluginStatus]) -> UnitState:
    """failed as soon as any unit failed, even while others still run."""
    status = UnitState.COMPLETE
    for p in plugins:
        if p.status is UnitState.FAILED:
            return UnitState.FAILED
        if p.status is UnitState.RUNNING:
            status = UnitState.RUNNING
    return status


POLICIES: dict[str, StatusPolicy] = {
    "running_first": derive_overall_state,
    "fail_fast": fail_fast,
}


def get_policy(name: str) -> StatusPolicy:
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(
            f"unknown status policy {name!r}; expected one of {sorted(POLICIES)}"
        ) from None
