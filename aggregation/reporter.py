"""
Run Status — Periodic Status Reporter

Background thread that republishes the run status on an interval until
a terminal overall status has been published.

A failed publish, or a result source that raises, is logged; the next
tick runs a fresh, complete publish cycle. Nothing is retried inside a
tick.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Mapping

from aggregation.publisher import PublishError
from aggregation.types import PluginResult, UnitState
from aggregation.updater import Updater

log = logging.getLogger("runstatus.reporter")

ResultSource = Callable[[], Mapping[str, PluginResult]]


class StatusReporter:
    """Publishes updater's status every interval seconds."""

    def __init__(
        self,
        updater: Updater,
        source: ResultSource | None = None,
        interval: float = 5.0,
    ):
        self.updater = updater
        self.source = source or dict
        self.interval = interval
        self.publishes = 0
        self.failures = 0
        # Terminal state this reporter published, once it has.
        self.finished: UnitState | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._done = threading.Event()

    def run_once(self) -> bool:
        """
        One publish cycle. Returns True once a terminal status has been
        published, meaning no further cycles are needed.
        """
        try:
            _, state = self.updater.publish_status(self.source())
        except PublishError as e:
            self.failures += 1
            log.warning("Status publish failed, retrying next tick: %s", e)
            return False
        except Exception:
            # A broken result source must not end the loop.
            self.failures += 1
            log.exception("Status publish cycle crashed, retrying next tick")
            return False
        self.publishes += 1
        if state.terminal:
            self.finished = state
        return state.terminal

    def _loop(self):
        try:
            while not self._stop.is_set():
                if self.run_once():
                    log.info("Terminal status %s published; reporter exiting",
                             self.finished.value)
                    return
                self._stop.wait(self.interval)
        finally:
            self._done.set()

    def start(self) -> None:
        if self._thread:
            return
        self._done.clear()
        self._thread = threading.Thread(
            target=self._loop, name="runstatus-reporter", daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        if self._thread:
            self._stop.set()
            self._thread.join(timeout=timeout)
            self._thread = None
            self._stop.clear()

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until the loop exits. Returns False on timeout. The loop
        also exits on stop(); check `finished` for the published outcome.
        """
        return self._done.wait(timeout)
