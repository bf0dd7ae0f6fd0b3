"""
Run Status — Status Updater

Tracks expected vs. received plugin results for one run and publishes
the consolidated status.

The updater is seeded with every expected result up front. The status
document holds one entry per expected result, in declaration order, and
never grows: reports for units that were not expected are rejected.
Lookups go through a positional index (UnitKey -> position in
Status.plugins).

Locking: one reader/writer lock guards the document and the index.
  - receive():            exclusive, for lookup + mutate + recompute
  - serialize/snapshot(): shared, for the whole encode/copy
  - receive_all():        one exclusive acquisition PER ITEM. The batch is
                          not atomic; a concurrent serialize() can see it
                          half applied. Use receive_all_atomic() when the
                          batch must land at once.
  - publish():            the pod patch runs after the lock is released,
                          so the applied document can already be stale.

Usage:
    updater = Updater(expected, namespace="heptio-sonobuoy",
                      publisher=StatusPublisher(client))
    updater.receive(PluginStatus("node-1", "e2e", UnitState.COMPLETE))
    updater.publish(results)
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Iterable, Mapping

from aggregation.policy import StatusPolicy, derive_overall_state
from aggregation.publisher import PublishError
from aggregation.rwlock import ReadWriteLock
from aggregation.types import (
    ExpectedResult,
    PluginResult,
    PluginStatus,
    Status,
    StatusEncodingError,
    UnitKey,
    UnitState,
)
from infra.logging import RunLogger

if TYPE_CHECKING:
    from aggregation.publisher import StatusPublisher


class UnitNotFoundError(LookupError):
    """A report named a unit that is not in the expected set."""
    def __init__(self, key: UnitKey):
        self.key = key
        super().__init__(f"couldn't find key for {key}")


class DuplicateUnitError(ValueError):
    """The expected set declares the same unit twice."""
    def __init__(self, key: UnitKey):
        self.key = key
        super().__init__(f"duplicate expected result {key}")


class Updater:
    """
    Manages the run status document and its publication.

    The overall state is only recomputed when a report arrives, so an
    updater seeded with no expected results stays running for good.
    """

    def __init__(
        self,
        expected: Iterable[ExpectedResult],
        namespace: str,
        publisher: StatusPublisher | None = None,
        policy: StatusPolicy | None = None,
        reject_duplicates: bool = False,
        events: RunLogger | None = None,
    ):
        self.namespace = namespace
        self.publisher = publisher
        self._policy = policy or derive_overall_state
        self._lock = ReadWriteLock()
        self._status = Status(status=UnitState.RUNNING)
        self._positions: dict[UnitKey, int] = {}
        self.events = events or RunLogger(namespace=namespace)
        self._last_published: UnitState | None = None

        for result in expected:
            key = UnitKey.of(result)
            if key in self._positions:
                if reject_duplicates:
                    raise DuplicateUnitError(key)
                # Later entry wins; the earlier one can no longer be updated.
                self.events.duplicate_unit(key.node, key.plugin, self._positions[key])
            self._positions[key] = len(self._status.plugins)
            self._status.plugins.append(
                PluginStatus(node=result.node, plugin=result.plugin)
            )

        self.events.run_started(expected=len(self._status.plugins))

    def __len__(self) -> int:
        return len(self._status.plugins)

    @property
    def status(self) -> UnitState:
        """Current overall state."""
        with self._lock.read_locked():
            return self._status.status

    # ─── Receiving ──────────────────────────────────────────────────

    def _apply(self, key: UnitKey, state: UnitState) -> None:
        """Lookup, mutate, recompute. Caller holds the write lock."""
        position = self._positions.get(key)
        if position is None:
            raise UnitNotFoundError(key)

        self._status.plugins[position].status = state
        self._status.status = self._policy(self._status.plugins)

    def receive(self, update: PluginStatus) -> None:
        """
        Record one plugin's status.

        Raises UnitNotFoundError when the unit was not expected; the
        document is left untouched in that case. A unit that already
        reached a terminal state is overwritten.
        """
        state = UnitState(update.status)
        key = update.key
        with self._lock.write_locked():
            previous = self._status.status
            self._apply(key, state)
            current = self._status.status

        self.events.unit_received(key.node, key.plugin, state.value)
        if previous is not current:
            self.events.status_changed(previous.value, current.value)

    def receive_all(self, results: Mapping[str, PluginResult]) -> None:
        """
        Record every result, one lock acquisition per item.

        Not atomic: readers may observe the batch partially applied.
        Unknown units are logged and skipped.
        """
        for result in results.values():
            update = PluginStatus(node=result.node, plugin=result.plugin, status=result.state)
            try:
                self.receive(update)
            except UnitNotFoundError as e:
                self.events.unit_rejected(update.node, update.plugin, update.status.value, e)

    def receive_all_atomic(self, results: Mapping[str, PluginResult]) -> list[UnitKey]:
        """
        Record every result under a single exclusive acquisition.

        Returns the keys that were not expected (also logged).
        """
        updates = [(UnitKey.of(r), r.state) for r in results.values()]
        missing: list[UnitKey] = []
        rejected: list[tuple[UnitKey, UnitState, UnitNotFoundError]] = []
        applied: list[tuple[UnitKey, UnitState]] = []
        with self._lock.write_locked():
            start = self._status.status
            for key, state in updates:
                try:
                    self._apply(key, state)
                except UnitNotFoundError as e:
                    missing.append(key)
                    rejected.append((key, state, e))
                else:
                    applied.append((key, state))
            end = self._status.status

        for key, state in applied:
            self.events.unit_received(key.node, key.plugin, state.value)
        for key, state, e in rejected:
            self.events.unit_rejected(key.node, key.plugin, state.value, e)
        if start is not end:
            self.events.status_changed(start.value, end.value)
        return missing

    # ─── Reading ────────────────────────────────────────────────────

    def serialize(self) -> str:
        """JSON-encode the status document under the shared lock."""
        with self._lock.read_locked():
            return self._status.to_json()

    def snapshot(self) -> Status:
        """Independent copy of the status document."""
        with self._lock.read_locked():
            return self._status.copy()

    # ─── Publishing ─────────────────────────────────────────────────

    def publish(self, results: Mapping[str, PluginResult] | None = None) -> str:
        """
        Record results, then annotate the aggregator pod with the status.

        Returns the name of the annotated pod. Failures raise PublishError;
        results already recorded stay recorded.
        """
        target, _ = self.publish_status(results)
        return target

    def publish_status(
        self, results: Mapping[str, PluginResult] | None = None,
    ) -> tuple[str, UnitState]:
        """Like publish(), also returning the overall state this call published."""
        if results:
            self.receive_all(results)

        if self.publisher is None:
            raise PublishError("no publisher configured")

        try:
            with self._lock.read_locked():
                serialized = self._status.to_json()
                overall = self._status.status
        except StatusEncodingError as e:
            self.events.publish_failed(e)
            raise PublishError("couldn't serialize status") from e

        t0 = time.time()
        try:
            target = self.publisher.publish(self.namespace, serialized)
        except PublishError as e:
            self.events.publish_failed(e)
            raise

        with self._lock.write_locked():
            self._last_published = overall
        self.events.publish_succeeded(target, overall.value, (time.time() - t0) * 1000)
        return target, overall

    @property
    def last_published(self) -> UnitState | None:
        """Overall state carried by the most recent successful publish."""
        with self._lock.read_locked():
            return self._last_published
