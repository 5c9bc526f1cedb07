"""Invoke one stage handler under its retry budget."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from time import perf_counter
from typing import Any

import structlog
from opentelemetry import trace
from pydantic import BaseModel, ValidationError
from tenacity import RetryCallState

from docflow.observability.metrics import (
    observe_stage_duration,
    record_stage_attempt,
    record_stage_retry,
)
from docflow.utils.errors import FoundationError
from docflow.utils.logging import bind_correlation_id, get_correlation_id, reset_correlation_id

from .events import AuditEventEmitter
from .graph import StageDefinition
from .resilience import NonRetriableError, RetryPolicy
from .stages import StageContext


class StageInputError(NonRetriableError):
    """The trigger payload does not satisfy the stage input model."""

    def __init__(self, stage: str, error: ValidationError) -> None:
        super().__init__(f"Invalid input for stage '{stage}': {error.error_count()} error(s)")
        self.stage = stage
        self.validation_error = error


class StageFailure(FoundationError):
    """A stage exhausted its retry budget; wraps the last error."""

    problem_type = "https://docflow.dev/problems/stage-failed"

    def __init__(self, stage: str, *, attempts: int, cause: BaseException) -> None:
        status = cause.problem.status if isinstance(cause, FoundationError) else 500
        super().__init__(
            f"Stage '{stage}' failed after {attempts} attempt(s)",
            status=status,
            detail=str(cause) or type(cause).__name__,
            extra={"stage": stage, "attempts": attempts, "error_type": type(cause).__name__},
        )
        self.stage = stage
        self.attempts = attempts
        self.cause = cause
        self.retriable = not isinstance(cause, NonRetriableError)


@dataclass(slots=True)
class StageOutcome:
    """Result of invoking a stage, including every retry."""

    stage: str
    output: BaseModel | None = None
    failure: StageFailure | None = None
    attempts: int = 0
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.failure is None


def _log_retry(pipeline: str, run_id: str, stage: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        record_stage_retry(pipeline, stage)
        logger.warning(
            "orchestration.stage.retry",
            pipeline=pipeline,
            run_id=run_id,
            stage=stage,
            attempt=retry_state.attempt_number,
            error=str(error) if error is not None else None,
            sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    return before_sleep


def invoke_stage(
    stage: StageDefinition,
    *,
    pipeline: str,
    run_id: str,
    trigger: Mapping[str, Any] | BaseModel,
    parent_outputs: Mapping[str, BaseModel],
    audit: AuditEventEmitter,
    retry_policy: RetryPolicy,
    correlation_id: str | None = None,
) -> StageOutcome:
    """Run ``stage`` until it succeeds or its retry budget is exhausted.

    Every attempt gets a fresh :class:`StageContext` and a freshly validated
    input, records ``STEP_STARTED`` and, once a handler returns a valid output,
    ``STEP_COMPLETED`` is recorded. Handler errors never escape; they are
    reported through :attr:`StageOutcome.failure`.
    """
    token = None
    if correlation_id and get_correlation_id() != correlation_id:
        token = bind_correlation_id(correlation_id)
    started = perf_counter()
    attempts = 0
    output: BaseModel | None = None
    try:
        with _TRACER.start_as_current_span(f"{pipeline}.{stage.name}") as span:
            span.set_attribute("pipeline.name", pipeline)
            span.set_attribute("pipeline.stage", stage.name)
            span.set_attribute("pipeline.run_id", run_id)
            try:
                for attempt in retry_policy.retrying(
                    stage.retries, before_sleep=_log_retry(pipeline, run_id, stage.name)
                ):
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        output = _attempt(
                            stage,
                            pipeline=pipeline,
                            run_id=run_id,
                            attempt=attempts,
                            trigger=trigger,
                            parent_outputs=parent_outputs,
                            audit=audit,
                            correlation_id=correlation_id,
                        )
            except Exception as exc:
                duration = perf_counter() - started
                failure = StageFailure(stage.name, attempts=attempts, cause=exc)
                span.set_attribute("stage.status", "failed")
                span.set_attribute("stage.attempts", attempts)
                observe_stage_duration(pipeline, stage.name, duration)
                logger.warning(
                    "orchestration.stage.failure",
                    pipeline=pipeline,
                    run_id=run_id,
                    stage=stage.name,
                    attempts=attempts,
                    error=failure.problem.detail,
                    error_type=type(exc).__name__,
                    duration_ms=round(duration * 1000, 3),
                )
                return StageOutcome(
                    stage=stage.name, failure=failure, attempts=attempts, duration=duration
                )

            duration = perf_counter() - started
            span.set_attribute("stage.status", "succeeded")
            span.set_attribute("stage.attempts", attempts)
            audit.emit_completed(stage.name, output)
            observe_stage_duration(pipeline, stage.name, duration)
            logger.info(
                "orchestration.stage.success",
                pipeline=pipeline,
                run_id=run_id,
                stage=stage.name,
                attempts=attempts,
                duration_ms=round(duration * 1000, 3),
            )
            return StageOutcome(
                stage=stage.name, output=output, attempts=attempts, duration=duration
            )
    finally:
        if token is not None:
            reset_correlation_id(token)


def _attempt(
    stage: StageDefinition,
    *,
    pipeline: str,
    run_id: str,
    attempt: int,
    trigger: Mapping[str, Any] | BaseModel,
    parent_outputs: Mapping[str, BaseModel],
    audit: AuditEventEmitter,
    correlation_id: str | None,
) -> BaseModel:
    handler = stage.handler
    try:
        payload = handler.parse_input(trigger)
    except ValidationError as exc:
        record_stage_attempt(pipeline, stage.name, "invalid_input")
        raise StageInputError(stage.name, exc) from exc
    context = StageContext(
        pipeline=pipeline,
        run_id=run_id,
        stage=stage.name,
        attempt=attempt,
        correlation_id=correlation_id,
        parent_outputs=parent_outputs,
    )
    audit.emit_started(stage.name, payload)
    logger.info(
        "orchestration.stage.start",
        pipeline=pipeline,
        run_id=run_id,
        stage=stage.name,
        step_run_id=context.step_run_id,
        attempt=attempt,
    )
    try:
        output = handler.coerce_output(handler.run(context, payload))
    except Exception:
        record_stage_attempt(pipeline, stage.name, "error")
        raise
    record_stage_attempt(pipeline, stage.name, "success")
    return output


__all__ = ["StageFailure", "StageInputError", "StageOutcome", "invoke_stage"]
logger = structlog.get_logger(__name__)
_TRACER = trace.get_tracer(__name__)
