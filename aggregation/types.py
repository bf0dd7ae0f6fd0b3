"""
Run Status — Aggregation Type Definitions

Identity keys, unit states, the per-unit status and the consolidated
status document published for a run.
"""

from __future__ import annotations

import copy
import enum
import json
from dataclasses import dataclass, field
from typing import Any


# ─── Unit States ────────────────────────────────────────────────────

class UnitState(str, enum.Enum):
    """Lifecycle states for one plugin result (and for the run overall)."""
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not UnitState.RUNNING


class StatusEncodingError(Exception):
    """The status document could not be encoded. Internal error."""


# ─── Identity ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class UnitKey:
    """node and plugin uniquely identify a single plugin result."""
    node: str
    plugin: str

    @staticmethod
    def of(item: Any) -> UnitKey:
        """
        Derive the key from anything carrying node and plugin.

        Expected entries, updates and external results all go through
        here so the three derivations can never disagree.
        """
        return UnitKey(node=item.node, plugin=item.plugin)

    def __str__(self) -> str:
        return f"{self.node}/{self.plugin}"


@dataclass(frozen=True)
class ExpectedResult:
    """A result the run is waiting for."""
    node: str
    plugin: str

    @staticmethod
    def from_dict(d: dict[str, Any]) -> ExpectedResult:
        return ExpectedResult(node=str(d["node"]), plugin=str(d["plugin"]))


@dataclass(frozen=True)
class PluginResult:
    """A result reported by a worker. A non-empty error marks it failed."""
    node: str
    plugin: str
    error: str = ""

    @property
    def state(self) -> UnitState:
        return UnitState.FAILED if self.error else UnitState.COMPLETE

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PluginResult:
        return PluginResult(
            node=str(d["node"]),
            plugin=str(d["plugin"]),
            error=str(d.get("error") or ""),
        )


# ─── Status Document ────────────────────────────────────────────────

@dataclass
class PluginStatus:
    """Status of one expected plugin result. Only status changes after creation."""
    node: str
    plugin: str
    status: UnitState = UnitState.RUNNING

    def __post_init__(self):
        # Rejects unknown states before they reach the document.
        self.status = UnitState(self.status)

    @property
    def key(self) -> UnitKey:
        return UnitKey.of(self)

    def to_dict(self) -> dict[str, str]:
        return {"plugin": self.plugin, "node": self.node, "status": self.status.value}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PluginStatus:
        return PluginStatus(node=d["node"], plugin=d["plugin"], status=d["status"])


@dataclass
class Status:
    """
    The consolidated status of a run.

    plugins has one entry per expected result, in the order they were
    declared. status is derived from plugins by the updater's policy.
    """
    plugins: list[PluginStatus] = field(default_factory=list)
    status: UnitState = UnitState.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "plugins": [p.to_dict() for p in self.plugins],
            "status": self.status.value,
        }

    def to_json(self) -> str:
        """Deterministic JSON encoding: fixed key order, compact separators."""
        try:
            return json.dumps(self.to_dict(), separators=(",", ":"))
        except (TypeError, ValueError, AttributeError) as e:
            raise StatusEncodingError(f"couldn't marshal status: {e}") from e

    def copy(self) -> Status:
        return copy.deepcopy(self)

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Status:
        return Status(
            plugins=[PluginStatus.from_dict(p) for p in d.get("plugins") or []],
            status=UnitState(d["status"]),
        )

    @staticmethod
    def from_json(text: str) -> Status:
        return Status.from_dict(json.loads(text))

    def counts(self) -> dict[str, int]:
        """Number of units per state."""
        out = {s.value: 0 for s in UnitState}
        for p in self.plugins:
            out[p.status.value] += 1
        return out
