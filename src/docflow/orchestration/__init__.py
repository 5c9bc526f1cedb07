"""Pipeline graph model, step execution contract and run orchestration."""

from __future__ import annotations

from importlib import import_module
from typing import Any

_ATTRIBUTE_MAP: dict[str, tuple[str, str]] = {
    "AuditEvent": ("docflow.orchestration.events", "AuditEvent"),
    "AuditEventEmitter": ("docflow.orchestration.events", "AuditEventEmitter"),
    "AuditEventType": ("docflow.orchestration.events", "AuditEventType"),
    "InMemoryAuditLog": ("docflow.orchestration.events", "InMemoryAuditLog"),
    "JsonlAuditLog": ("docflow.orchestration.events", "JsonlAuditLog"),
    "DagExecutor": ("docflow.orchestration.executor", "DagExecutor"),
    "CycleError": ("docflow.orchestration.graph", "CycleError"),
    "DuplicatePipelineError": ("docflow.orchestration.graph", "DuplicatePipelineError"),
    "DuplicateStageError": ("docflow.orchestration.graph", "DuplicateStageError"),
    "PipelineDefinition": ("docflow.orchestration.graph", "PipelineDefinition"),
    "PipelineDefinitionError": ("docflow.orchestration.graph", "PipelineDefinitionError"),
    "PipelineGraph": ("docflow.orchestration.graph", "PipelineGraph"),
    "StageDefinition": ("docflow.orchestration.graph", "StageDefinition"),
    "UnknownParentError": ("docflow.orchestration.graph", "UnknownParentError"),
    "validate_pipeline": ("docflow.orchestration.graph", "validate_pipeline"),
    "StageFailure": ("docflow.orchestration.invocation", "StageFailure"),
    "StageOutcome": ("docflow.orchestration.invocation", "StageOutcome"),
    "invoke_stage": ("docflow.orchestration.invocation", "invoke_stage"),
    "RetryPolicy": ("docflow.orchestration.resilience", "RetryPolicy"),
    "PipelineRun": ("docflow.orchestration.run", "PipelineRun"),
    "RunReport": ("docflow.orchestration.run", "RunReport"),
    "RunStatus": ("docflow.orchestration.run", "RunStatus"),
    "StageStatus": ("docflow.orchestration.run", "StageStatus"),
    "OrchestrationContext": ("docflow.orchestration.runtime", "OrchestrationContext"),
    "FunctionHandler": ("docflow.orchestration.stages", "FunctionHandler"),
    "HandlerRegistry": ("docflow.orchestration.stages", "HandlerRegistry"),
    "StageContext": ("docflow.orchestration.stages", "StageContext"),
    "StageHandler": ("docflow.orchestration.stages", "StageHandler"),
    "stage_handler": ("docflow.orchestration.stages", "stage_handler"),
    "PipelineTopology": ("docflow.orchestration.topology", "PipelineTopology"),
}

__all__ = sorted(_ATTRIBUTE_MAP)


def __getattr__(name: str) -> Any:
    try:
        module_name, attr_name = _ATTRIBUTE_MAP[name]
    except KeyError as exc:  # pragma: no cover - standard attribute error path
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'") from exc

    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:  # pragma: no cover - convenience helper
    return sorted(globals().keys() | _ATTRIBUTE_MAP.keys())
