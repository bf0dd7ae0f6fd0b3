"""
Run Status — Structured Logging

JSON line logging for the aggregator. Every record carries the service
identity; run events carry run_id and namespace so a single aggregation
run can be followed across producers, reporters and publishes.

Usage:
    from infra.logging import RunLogger, configure_logging

    configure_logging(level="INFO")
    events = RunLogger(namespace="heptio-sonobuoy")
    events.unit_received("node-1", "e2e", "complete")
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "runstatus"


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """
    Formats log records as JSON lines.

    Structured fields are taken from ``record.structured`` (set through
    ``extra={"structured": {...}}`` or by RunLogger).
    """

    def __init__(self, service_name: str = ROOT_LOGGER):
        super().__init__()
        self.service_name = service_name
        self.service_version = os.environ.get("RS_VERSION", "0.1.0")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
            "service.version": self.service_version,
        }

        if hasattr(record, "structured"):
            entry.update(record.structured)

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception.type"] = record.exc_info[0].__name__
            entry["exception.message"] = str(record.exc_info[1])

        return json.dumps(entry, default=str)


# ═══════════════════════════════════════════════════════════════════
# Log Configuration
# ═══════════════════════════════════════════════════════════════════

def configure_logging(
    level: str = "INFO",
    stream: Any = None,
    service_name: str = ROOT_LOGGER,
) -> logging.Logger:
    """
    Configure the runstatus logger with JSON output.

    Args:
        level: DEBUG, INFO, WARNING, ERROR
        stream: Output stream (default: sys.stderr)
        service_name: Service name in log entries

    Returns:
        The configured runstatus root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid duplicate handlers on reconfigure
    logger.handlers.clear()
    for name in list(logging.Logger.manager.loggerDict.keys()):
        if name.startswith(ROOT_LOGGER + "."):
            child = logging.getLogger(name)
            child.handlers.clear()
            child.setLevel(logging.NOTSET)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = "") -> logging.Logger:
    """Get a child logger under the runstatus namespace."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return logging.getLogger(ROOT_LOGGER)


def generate_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:12]}"


# ═══════════════════════════════════════════════════════════════════
# Run Event Logger
# ═══════════════════════════════════════════════════════════════════

class RunLogger:
    """
    Emits structured events for one aggregation run.

    Every entry includes run_id and namespace.
    """

    def __init__(self, namespace: str = "", run_id: str | None = None,
                 name: str = "events"):
        self.namespace = namespace
        self.run_id = run_id or generate_run_id()
        self._logger = get_logger(name)

    def _base_fields(self) -> dict[str, Any]:
        return {"run_id": self.run_id, "namespace": self.namespace}

    def _emit(self, level: int, action: str, exc: BaseException | None = None,
              **fields):
        if not self._logger.isEnabledFor(level):
            return
        record = self._logger.makeRecord(
            name=self._logger.name,
            level=level,
            fn="", lno=0, msg=action,
            args=(),
            exc_info=(type(exc), exc, exc.__traceback__) if exc else None,
        )
        record.structured = {**self._base_fields(), "action": action, **fields}
        self._logger.handle(record)

    def run_started(self, expected: int) -> None:
        self._emit(logging.INFO, "run_started", expected=expected)

    def duplicate_unit(self, node: str, plugin: str, position: int) -> None:
        self._emit(logging.WARNING, "duplicate_unit",
                   node=node, plugin=plugin, shadowed_position=position)

    def unit_received(self, node: str, plugin: str, status: str) -> None:
        self._emit(logging.DEBUG, "unit_received",
                   node=node, plugin=plugin, status=status)

    def unit_rejected(self, node: str, plugin: str, status: str,
                      error: BaseException) -> None:
        # Dropped reports are informational: unknown units are expected noise.
        self._emit(logging.INFO, "unit_rejected", exc=error,
                   node=node, plugin=plugin, status=status)

    def status_changed(self, previous: str, current: str) -> None:
        self._emit(logging.INFO, "status_changed",
                   previous=previous, current=current)

    def publish_succeeded(self, target: str, status: str,
                          latency_ms: float) -> None:
        self._emit(logging.INFO, "publish_succeeded", target=target,
                   status=status, latency_ms=round(latency_ms, 1))

    def publish_failed(self, error: BaseException) -> None:
        self._emit(logging.ERROR, "publish_failed", exc=error,
                   error=str(error)[:500])
