"""State of a single pipeline run.

Key Responsibilities:
    - Track the status of every stage and enforce legal status transitions
    - Compute which stages are ready: pending with every parent succeeded
    - Cascade ``skipped`` to stages that can no longer run after a failure
      and to every pending stage when the run is cancelled
    - Snapshot the run into a serialisable :class:`RunReport`

Collaborators:
    - Upstream: :class:`~docflow.orchestration.executor.DagExecutor`
    - Downstream: :class:`~docflow.orchestration.graph.PipelineGraph`

Thread Safety:
    - All transitions are compare-and-set operations under a per-run lock, so a
      stage can be claimed for execution at most once and fan-in readiness is
      evaluated atomically
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from docflow.utils.errors import FoundationError, ProblemDetail

from .graph import PipelineGraph

logger = structlog.get_logger(__name__)


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STAGE_STATUSES = frozenset(
    {StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.SKIPPED}
)

ALLOWED_TRANSITIONS: Mapping[StageStatus, frozenset[StageStatus]] = MappingProxyType(
    {
        StageStatus.PENDING: frozenset({StageStatus.RUNNING, StageStatus.SKIPPED}),
        StageStatus.RUNNING: frozenset({StageStatus.SUCCEEDED, StageStatus.FAILED}),
        StageStatus.SUCCEEDED: frozenset(),
        StageStatus.FAILED: frozenset(),
        StageStatus.SKIPPED: frozenset(),
    }
)


class RunStateError(FoundationError):
    """Raised when a stage transition violates the run state machine."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class StageState:
    """Mutable bookkeeping for one stage; only touched under the run lock."""

    status: StageStatus = StageStatus.PENDING
    attempts: int = 0
    output: BaseModel | None = None
    error: ProblemDetail | None = None
    skip_reason: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: float | None = None


# ==============================================================================
# REPORTS
# ==============================================================================


class StageReport(BaseModel):
    name: str
    status: StageStatus
    attempts: int = 0
    duration_ms: float | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    skip_reason: str | None = None
    error: dict[str, Any] | None = None
    output: dict[str, Any] | None = None


class RunReport(BaseModel):
    """Serialisable snapshot of a pipeline run."""

    run_id: str
    pipeline: str
    status: RunStatus
    correlation_id: str | None = None
    started_at: datetime
    finished_at: datetime | None = None
    stages: list[StageReport] = Field(default_factory=list)

    def stage(self, name: str) -> StageReport:
        for report in self.stages:
            if report.name == name:
                return report
        raise KeyError(name)

    def statuses(self) -> dict[str, StageStatus]:
        return {report.name: report.status for report in self.stages}


# ==============================================================================
# RUN STATE
# ==============================================================================


class PipelineRun:
    """Execution state of one pipeline against one trigger input."""

    def __init__(
        self,
        graph: PipelineGraph,
        trigger: Mapping[str, Any] | BaseModel,
        *,
        run_id: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self.graph = graph
        self.trigger = trigger
        self.run_id = run_id or uuid4().hex
        self.correlation_id = correlation_id or self.run_id
        self.started_at = _utcnow()
        self.finished_at: datetime | None = None
        self._lock = threading.RLock()
        self._states = {name: StageState() for name in graph.topological_order()}
        self._cancelled = False

    # ------------------------------------------------------------------ queries

    @property
    def pipeline(self) -> str:
        return self.graph.name

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def stage_status(self, name: str) -> StageStatus:
        with self._lock:
            return self._states[name].status

    def statuses(self) -> dict[str, StageStatus]:
        with self._lock:
            return {name: state.status for name, state in self._states.items()}

    def ready_stages(self) -> list[str]:
        """Pending stages whose parents have all succeeded, in topological order."""
        with self._lock:
            if self._cancelled:
                return []
            return [name for name in self._states if self._is_ready(name)]

    def running_stages(self) -> list[str]:
        with self._lock:
            return [n for n, s in self._states.items() if s.status is StageStatus.RUNNING]

    def parent_outputs(self, name: str) -> Mapping[str, BaseModel]:
        with self._lock:
            outputs: dict[str, BaseModel] = {}
            for parent in self.graph.parents(name):
                output = self._states[parent].output
                if output is not None:
                    outputs[parent] = output
            return MappingProxyType(outputs)

    def is_finished(self) -> bool:
        with self._lock:
            return all(state.status in TERMINAL_STAGE_STATUSES for state in self._states.values())

    @property
    def status(self) -> RunStatus:
        with self._lock:
            states = self._states.values()
            if not all(state.status in TERMINAL_STAGE_STATUSES for state in states):
                return RunStatus.RUNNING
            if any(state.status is StageStatus.FAILED for state in states):
                return RunStatus.FAILED
            if self._cancelled:
                return RunStatus.CANCELLED
            return RunStatus.SUCCEEDED

    # -------------------------------------------------------------- transitions

    def try_start(self, name: str) -> bool:
        """Claim ``name`` for execution; ``False`` when it is not ready."""
        with self._lock:
            if self._cancelled or not self._is_ready(name):
                return False
            state = self._states[name]
            self._transition(name, state, StageStatus.RUNNING)
            state.started_at = _utcnow()
            return True

    def mark_succeeded(
        self, name: str, output: BaseModel | None, *, attempts: int, duration: float
    ) -> list[str]:
        """Record success; returns stages that became ready as a consequence."""
        with self._lock:
            state = self._states[name]
            self._transition(name, state, StageStatus.SUCCEEDED)
            state.output = output
            self._finish(state, attempts, duration)
            if self._cancelled:
                return []
            return [child for child in self.graph.children(name) if self._is_ready(child)]

    def mark_failed(
        self, name: str, error: ProblemDetail, *, attempts: int, duration: float
    ) -> list[str]:
        """Record a terminal failure; returns the stages skipped by the cascade."""
        with self._lock:
            state = self._states[name]
            self._transition(name, state, StageStatus.FAILED)
            state.error = error
            self._finish(state, attempts, duration)
            skipped: list[str] = []
            for descendant in self.graph.descendants(name):
                descendant_state = self._states[descendant]
                if descendant_state.status is not StageStatus.PENDING:
                    continue
                blocked = [
                    parent
                    for parent in self.graph.parents(descendant)
                    if self._states[parent].status in {StageStatus.FAILED, StageStatus.SKIPPED}
                ]
                if blocked:
                    reason = f"upstream stage '{blocked[0]}' did not succeed"
                    self._skip(descendant, descendant_state, reason)
                    skipped.append(descendant)
            return skipped

    def cancel(self, reason: str = "run cancelled") -> list[str]:
        """Skip every pending stage; in-flight stages are left to finish."""
        with self._lock:
            if self._cancelled:
                return []
            self._cancelled = True
            skipped = []
            for name, state in self._states.items():
                if state.status is StageStatus.PENDING:
                    self._skip(name, state, reason)
                    skipped.append(name)
            logger.info(
                "orchestration.run.cancelled",
                pipeline=self.pipeline,
                run_id=self.run_id,
                reason=reason,
                skipped=skipped,
            )
            return skipped

    def close(self) -> None:
        with self._lock:
            if self.finished_at is None:
                self.finished_at = _utcnow()

    def report(self) -> RunReport:
        with self._lock:
            return RunReport(
                run_id=self.run_id,
                pipeline=self.pipeline,
                status=self.status,
                correlation_id=self.correlation_id,
                started_at=self.started_at,
                finished_at=self.finished_at,
                stages=[
                    StageReport(
                        name=name,
                        status=state.status,
                        attempts=state.attempts,
                        duration_ms=state.duration_ms,
                        started_at=state.started_at,
                        finished_at=state.finished_at,
                        skip_reason=state.skip_reason,
                        error=state.error.model_dump() if state.error else None,
                        output=state.output.model_dump(mode="json") if state.output else None,
                    )
                    for name, state in self._states.items()
                ],
            )

    # ----------------------------------------------------------------- helpers

    def _is_ready(self, name: str) -> bool:
        if self._states[name].status is not StageStatus.PENDING:
            return False
        return all(
            self._states[parent].status is StageStatus.SUCCEEDED
            for parent in self.graph.parents(name)
        )

    def _transition(self, name: str, state: StageState, target: StageStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[state.status]:
            raise RunStateError(
                f"Invalid transition for stage '{name}': {state.status.value} -> {target.value}",
                status=409,
                extra={"run_id": self.run_id, "stage": name},
            )
        state.status = target

    def _finish(self, state: StageState, attempts: int, duration: float) -> None:
        state.attempts = attempts
        state.finished_at = _utcnow()
        state.duration_ms = round(duration * 1000, 3)

    def _skip(self, name: str, state: StageState, reason: str) -> None:
        self._transition(name, state, StageStatus.SKIPPED)
        state.skip_reason = reason
        state.finished_at = _utcnow()
        logger.info(
            "orchestration.stage.skipped",
            pipeline=self.pipeline,
            run_id=self.run_id,
            stage=name,
            reason=reason,
        )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "PipelineRun",
    "RunReport",
    "RunStateError",
    "RunStatus",
    "StageReport",
    "StageState",
    "StageStatus",
    "TERMINAL_STAGE_STATUSES",
]
