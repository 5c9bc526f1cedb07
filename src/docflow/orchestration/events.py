"""Append-only audit trail of stage lifecycle events.

Key Responsibilities:
    - Build ``STEP_STARTED`` and ``STEP_COMPLETED`` events for stage attempts
    - Persist events as newline-delimited JSON, one object per line with the
      fields ``timestamp``, ``type``, ``step`` and ``data``
    - Keep audit persistence best-effort so stage execution never fails
      because the trail could not be written

Collaborators:
    - Upstream: :func:`~docflow.orchestration.invocation.invoke_stage`
    - Downstream: local filesystem or an in-memory buffer

Side Effects:
    - Appends to the configured JSONL file

Thread Safety:
    - Sinks serialise appends with a lock and write each record with a single
      call, so concurrent stages never interleave partial lines
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import orjson
import structlog
from pydantic import BaseModel

from docflow.observability.metrics import record_audit_write_failure

logger = structlog.get_logger(__name__)


class AuditEventType(str, Enum):
    STEP_STARTED = "STEP_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _orjson_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Type {type(value).__name__} is not JSON serializable")


@dataclass(slots=True, frozen=True)
class AuditEvent:
    """Immutable record of one stage lifecycle transition."""

    timestamp: datetime
    event_type: AuditEventType
    stage_name: str
    payload: Any = None

    def to_record(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "type": self.event_type.value,
            "step": self.stage_name,
            "data": _to_jsonable(self.payload),
        }

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_record(), default=_orjson_default)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> AuditEvent:
        return cls(
            timestamp=datetime.fromisoformat(record["timestamp"]),
            event_type=AuditEventType(record["type"]),
            stage_name=record["step"],
            payload=record.get("data"),
        )


@dataclass(slots=True)
class AuditEventFactory:
    """Create audit events stamped by ``clock``."""

    clock: Callable[[], datetime] = field(default=_utcnow)

    def step_started(self, stage: str, data: Any) -> AuditEvent:
        return AuditEvent(self.clock(), AuditEventType.STEP_STARTED, stage, data)

    def step_completed(self, stage: str, data: Any) -> AuditEvent:
        return AuditEvent(self.clock(), AuditEventType.STEP_COMPLETED, stage, data)


# ==============================================================================
# SINKS
# ==============================================================================


class AuditSink(ABC):
    """Destination for audit events."""

    name: str = "audit"

    @abstractmethod
    def append(self, event: AuditEvent) -> None:
        """Persist ``event``; may raise on I/O failure."""


class JsonlAuditLog(AuditSink):
    """Newline-delimited JSON file opened in append mode for every record."""

    name = "jsonl"

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, event: AuditEvent) -> None:
        line = event.to_json() + b"\n"
        with self._lock:
            with self._path.open("ab") as handle:
                handle.write(line)


class InMemoryAuditLog(AuditSink):
    """Keeps events in memory; used for embedding and tests."""

    name = "memory"

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def append(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def records(self) -> list[dict[str, Any]]:
        return [event.to_record() for event in self.events]


def iter_audit_log(path: str | Path) -> Iterator[AuditEvent]:
    """Yield events stored in a JSONL audit file, skipping blank lines."""
    with Path(path).open("rb") as handle:
        for line in handle:
            if line.strip():
                yield AuditEvent.from_record(orjson.loads(line))


# ==============================================================================
# EMITTER
# ==============================================================================


class AuditEventEmitter:
    """Record stage lifecycle events on a sink without ever raising."""

    def __init__(
        self,
        sink: AuditSink | None,
        *,
        factory: AuditEventFactory | None = None,
    ) -> None:
        self._sink = sink
        self._factory = factory or AuditEventFactory()

    @property
    def sink(self) -> AuditSink | None:
        return self._sink

    def record(self, event: AuditEvent) -> bool:
        """Append ``event``; returns ``False`` when it could not be persisted."""
        if self._sink is None:
            return False
        try:
            self._sink.append(event)
        except Exception as exc:
            record_audit_write_failure(self._sink.name)
            logger.warning(
                "orchestration.audit.write_failed",
                sink=self._sink.name,
                event_type=event.event_type.value,
                stage=event.stage_name,
                error=str(exc),
            )
            return False
        return True

    def emit_started(self, stage: str, data: Any) -> bool:
        return self.record(self._factory.step_started(stage, data))

    def emit_completed(self, stage: str, data: Any) -> bool:
        return self.record(self._factory.step_completed(stage, data))


__all__ = [
    "AuditEvent",
    "AuditEventEmitter",
    "AuditEventFactory",
    "AuditEventType",
    "AuditSink",
    "InMemoryAuditLog",
    "JsonlAuditLog",
    "iter_audit_log",
]
