"""Orchestration context owning registered pipelines and their executor.

Key Responsibilities:
    - Validate and register pipeline definitions and expose the registration
      manifest (stage names, parents, retry budgets, input/output schemas)
    - Start runs directly or for every pipeline subscribed to an event
    - Track active runs so they can be cancelled individually or on shutdown
    - Install SIGINT/SIGTERM handlers for graceful shutdown

Collaborators:
    - Upstream: The CLI and embedding applications construct one context and
      pass it explicitly; there is no process-wide registry
    - Downstream: :class:`~docflow.orchestration.executor.DagExecutor`,
      :class:`~docflow.orchestration.events.AuditEventEmitter`

Side Effects:
    - Optionally serves Prometheus metrics over HTTP after :meth:`start`
    - Replaces process signal handlers while installed

Thread Safety:
    - Registration and the active run table are guarded by a lock; runs may be
      started from several threads concurrently
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterable, Mapping
from types import FrameType
from typing import Any

import structlog
from pydantic import BaseModel

from docflow.config.settings import AppSettings, get_settings
from docflow.observability.metrics import start_metrics_server
from docflow.utils.errors import FoundationError

from .events import AuditEventEmitter, JsonlAuditLog
from .executor import DagExecutor
from .graph import DuplicatePipelineError, PipelineDefinition, PipelineGraph, validate_pipeline
from .run import PipelineRun, RunReport

logger = structlog.get_logger(__name__)


class OrchestrationError(FoundationError):
    """Raised when the context cannot accept work."""

    status = 503


class UnknownPipelineError(FoundationError):
    status = 404

    def __init__(self, pipeline: str) -> None:
        super().__init__(f"Pipeline '{pipeline}' is not registered", extra={"pipeline": pipeline})
        self.pipeline = pipeline


class OrchestrationContext:
    """Explicitly constructed runtime for a set of pipelines."""

    def __init__(
        self,
        *,
        settings: AppSettings | None = None,
        executor: DagExecutor | None = None,
        audit: AuditEventEmitter | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        if executor is None:
            if audit is None:
                sink = JsonlAuditLog(self._settings.audit.path) if self._settings.audit.enabled else None
                audit = AuditEventEmitter(sink)
            executor = DagExecutor.from_settings(self._settings.orchestration, audit=audit)
        self._executor = executor
        self._pipelines: dict[str, PipelineGraph] = {}
        self._active: dict[str, PipelineRun] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._previous_handlers: dict[int, Any] = {}
        self._started = False
        self._closed = False

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def executor(self) -> DagExecutor:
        return self._executor

    # ------------------------------------------------------------ registration

    def register(self, definition: PipelineDefinition) -> PipelineGraph:
        """Validate ``definition`` and make it available for runs.

        Raises:
            DuplicateStageError, UnknownParentError, CycleError: invalid graph.
            DuplicatePipelineError: a pipeline with the same name exists.
        """
        graph = validate_pipeline(definition)
        with self._lock:
            if graph.name in self._pipelines:
                raise DuplicatePipelineError(graph.name)
            self._pipelines[graph.name] = graph
        logger.info(
            "orchestration.pipeline.registered",
            pipeline=graph.name,
            events=list(graph.on_events),
            stages=list(graph.topological_order()),
        )
        return graph

    def register_all(self, definitions: Iterable[PipelineDefinition]) -> list[PipelineGraph]:
        return [self.register(definition) for definition in definitions]

    def pipeline(self, name: str) -> PipelineGraph:
        with self._lock:
            try:
                return self._pipelines[name]
            except KeyError:
                raise UnknownPipelineError(name) from None

    def pipelines(self) -> list[PipelineGraph]:
        with self._lock:
            return list(self._pipelines.values())

    def subscribers(self, event: str) -> list[PipelineGraph]:
        return [graph for graph in self.pipelines() if event in graph.on_events]

    def manifest(self) -> list[dict[str, Any]]:
        """Registration surface handed to an external orchestration substrate."""
        return [graph.describe() for graph in self.pipelines()]

    # ---------------------------------------------------------------- lifecycle

    def start(self) -> OrchestrationContext:
        if self._closed:
            raise OrchestrationError("Orchestration context has been shut down")
        if self._started:
            return self
        port = self._settings.observability.metrics.port
        if port is not None:
            start_metrics_server(port)
        self._started = True
        logger.info(
            "orchestration.context.started",
            service=self._settings.service_name,
            environment=self._settings.environment.value,
            pipelines=[graph.name for graph in self.pipelines()],
            max_workers=self._executor.max_workers,
            metrics_port=port,
        )
        return self

    def shutdown(self, *, reason: str = "shutdown requested") -> None:
        """Cancel active runs, wait for in-flight stages and release workers."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._stop_event.set()
        cancelled = self.cancel_all(reason)
        self._executor.shutdown(wait=True)
        self.restore_signal_handlers()
        logger.info("orchestration.context.shutdown", reason=reason, cancelled_runs=cancelled)

    def __enter__(self) -> OrchestrationContext:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def install_signal_handlers(
        self, signals: Iterable[signal.Signals] = (signal.SIGTERM, signal.SIGINT)
    ) -> None:
        """Cancel active runs when the process is asked to stop.

        Must be called from the main thread. Cancellation happens on a helper
        thread so the handler never runs run-state transitions re-entrantly.
        """

        def _signal_handler(signum: int, _frame: FrameType | None) -> None:  # pragma: no cover
            logger.info("orchestration.context.shutdown_requested", signal=signal.Signals(signum).name)
            self._stop_event.set()
            threading.Thread(
                target=self.cancel_all,
                args=(f"received {signal.Signals(signum).name}",),
                name="docflow-cancel",
                daemon=True,
            ).start()

        for sig in signals:
            self._previous_handlers[sig] = signal.signal(sig, _signal_handler)

    def restore_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for sig, previous in self._previous_handlers.items():
            signal.signal(sig, previous)
        self._previous_handlers.clear()

    def wait_for_shutdown(self, timeout: float | None = None) -> bool:
        """Block until a shutdown signal or :meth:`shutdown`; ``True`` when stopped."""
        return self._stop_event.wait(timeout)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    # --------------------------------------------------------------------- runs

    def run(
        self,
        pipeline: str,
        payload: Mapping[str, Any] | BaseModel,
        *,
        run_id: str | None = None,
        correlation_id: str | None = None,
    ) -> RunReport:
        """Execute ``pipeline`` for ``payload`` and return its report."""
        graph = self.pipeline(pipeline)
        run = PipelineRun(graph, payload, run_id=run_id, correlation_id=correlation_id)
        with self._lock:
            # shutdown either cancels this run or rejects it
            if self._closed or self._stop_event.is_set():
                raise OrchestrationError("Orchestration context is not accepting runs")
            self._active[run.run_id] = run
        try:
            return self._executor.drive(run)
        finally:
            with self._lock:
                self._active.pop(run.run_id, None)

    def trigger(self, event: str, payload: Mapping[str, Any] | BaseModel) -> list[RunReport]:
        """Run every pipeline subscribed to ``event``."""
        graphs = self.subscribers(event)
        if not graphs:
            logger.warning("orchestration.event.unhandled", event=event)
            return []
        logger.info("orchestration.event.received", event=event, pipelines=[g.name for g in graphs])
        return [self.run(graph.name, payload) for graph in graphs]

    def active_runs(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def cancel(self, run_id: str, *, reason: str = "run cancelled") -> bool:
        """Cancel one active run; returns ``False`` when it is not active."""
        with self._lock:
            run = self._active.get(run_id)
        if run is None:
            return False
        run.cancel(reason)
        return True

    def cancel_all(self, reason: str = "run cancelled") -> int:
        with self._lock:
            runs = list(self._active.values())
        for run in runs:
            run.cancel(reason)
        return len(runs)


__all__ = ["OrchestrationContext", "OrchestrationError", "UnknownPipelineError"]
