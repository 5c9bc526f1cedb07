"""Thread pool executor driving a pipeline run to completion."""

from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from time import perf_counter
from typing import Any

import structlog
from opentelemetry import trace
from pydantic import BaseModel

from docflow.config.settings import OrchestrationSettings
from docflow.observability.metrics import record_run, record_stage_terminal
from docflow.utils.errors import ProblemDetail

from .events import AuditEventEmitter
from .graph import PipelineGraph
from .invocation import StageOutcome, invoke_stage
from .resilience import RetryPolicy
from .run import PipelineRun, RunReport


class DagExecutor:
    """Executes ready stages concurrently while the scheduler thread owns run state.

    One task is submitted per ready stage. The scheduler waits for the first
    completion, records it on the run, and submits whatever became ready.
    A failing stage never cancels siblings that are already running.
    """

    def __init__(
        self,
        *,
        max_workers: int = 10,
        retry_policy: RetryPolicy | None = None,
        audit: AuditEventEmitter | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._max_workers = max_workers
        self._retry_policy = retry_policy or RetryPolicy()
        self._audit = audit or AuditEventEmitter(None)
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="docflow-stage")

    @classmethod
    def from_settings(
        cls, settings: OrchestrationSettings, *, audit: AuditEventEmitter | None = None
    ) -> DagExecutor:
        return cls(
            max_workers=settings.max_workers,
            retry_policy=RetryPolicy.from_settings(settings.backoff),
            audit=audit,
        )

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def audit(self) -> AuditEventEmitter:
        return self._audit

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> DagExecutor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def execute(
        self,
        graph: PipelineGraph,
        trigger: Mapping[str, Any] | BaseModel,
        *,
        run_id: str | None = None,
        correlation_id: str | None = None,
    ) -> RunReport:
        """Create a run for ``graph`` and drive it to a terminal status."""
        run = PipelineRun(graph, trigger, run_id=run_id, correlation_id=correlation_id)
        return self.drive(run)

    def drive(self, run: PipelineRun) -> RunReport:
        """Drive an existing run; other threads may call ``run.cancel()`` meanwhile."""
        started = perf_counter()
        logger.info(
            "orchestration.pipeline.start",
            pipeline=run.pipeline,
            run_id=run.run_id,
            correlation_id=run.correlation_id,
            stages=len(run.graph),
        )
        with _TRACER.start_as_current_span(f"pipeline.{run.pipeline}") as span:
            span.set_attribute("pipeline.name", run.pipeline)
            span.set_attribute("pipeline.run_id", run.run_id)
            in_flight: dict[Future[StageOutcome], str] = {}
            interrupt: BaseException | None = None
            self._submit_ready(run, in_flight)
            while in_flight:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    name = in_flight.pop(future)
                    interrupt = self._record(run, name, future) or interrupt
                self._submit_ready(run, in_flight)

            run.close()
            report = run.report()
            total = perf_counter() - started
            span.set_attribute("pipeline.status", report.status.value)
            span.set_attribute("pipeline.duration_ms", round(total * 1000, 3))
        record_run(run.pipeline, report.status.value, total)
        logger.info(
            "orchestration.pipeline.complete",
            pipeline=run.pipeline,
            run_id=run.run_id,
            correlation_id=run.correlation_id,
            status=report.status.value,
            duration_ms=round(total * 1000, 3),
        )
        if interrupt is not None:
            raise interrupt
        return report

    def _submit_ready(self, run: PipelineRun, in_flight: dict[Future[StageOutcome], str]) -> None:
        for name in run.ready_stages():
            if not run.try_start(name):
                continue
            try:
                future = self._pool.submit(
                    invoke_stage,
                    run.graph.stage(name),
                    pipeline=run.pipeline,
                    run_id=run.run_id,
                    trigger=run.trigger,
                    parent_outputs=run.parent_outputs(name),
                    audit=self._audit,
                    retry_policy=self._retry_policy,
                    correlation_id=run.correlation_id,
                )
            except RuntimeError as exc:
                # the pool refuses work once shut down
                logger.warning(
                    "orchestration.stage.submit_failed",
                    pipeline=run.pipeline,
                    run_id=run.run_id,
                    stage=name,
                    error=str(exc),
                )
                problem = ProblemDetail(
                    title="Stage could not be scheduled", status=503, detail=str(exc)
                )
                skipped = run.mark_failed(name, problem, attempts=0, duration=0.0)
                self._count_terminal(run.pipeline, "failed", skipped)
                run.cancel("executor is shut down")
                return
            in_flight[future] = name

    def _record(
        self, run: PipelineRun, name: str, future: Future[StageOutcome]
    ) -> BaseException | None:
        """Apply a finished invocation to ``run``.

        Returns an exception that is not an ``Exception`` (interpreter exit or
        interrupt) so the caller can re-raise it once in-flight stages drained.
        """
        try:
            outcome = future.result()
        except BaseException as exc:
            problem = ProblemDetail(
                title="Stage invocation crashed",
                status=500,
                detail=str(exc) or type(exc).__name__,
            )
            skipped = run.mark_failed(name, problem, attempts=0, duration=0.0)
            self._count_terminal(run.pipeline, "failed", skipped)
            if isinstance(exc, Exception):
                return None
            run.cancel(f"interrupted by {type(exc).__name__}")
            return exc
        if outcome.succeeded:
            run.mark_succeeded(
                name, outcome.output, attempts=outcome.attempts, duration=outcome.duration
            )
            record_stage_terminal(run.pipeline, "succeeded")
            return None
        assert outcome.failure is not None
        skipped = run.mark_failed(
            name,
            outcome.failure.problem,
            attempts=outcome.attempts,
            duration=outcome.duration,
        )
        self._count_terminal(run.pipeline, "failed", skipped)
        return None

    @staticmethod
    def _count_terminal(pipeline: str, status: str, skipped: list[str]) -> None:
        record_stage_terminal(pipeline, status)
        for _ in skipped:
            record_stage_terminal(pipeline, "skipped")


__all__ = ["DagExecutor"]
logger = structlog.get_logger(__name__)
_TRACER = trace.get_tracer(__name__)
