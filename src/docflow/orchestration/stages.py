"""Typed stage handlers and the context passed to each invocation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Generic, TypeVar
from uuid import uuid4

import structlog
from pydantic import BaseModel

from docflow.utils.errors import FoundationError

logger = structlog.get_logger(__name__)

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)
ModelT = TypeVar("ModelT", bound=BaseModel)


class HandlerRegistryError(FoundationError):
    """Raised when handler registration or lookup fails."""

    status = 400


@dataclass(slots=True, frozen=True)
class StageContext:
    """Per-attempt view of a run handed to a stage handler.

    A fresh context is created for every invocation attempt, so ``step_run_id``
    identifies a single attempt while ``run_id`` is shared by the whole run.
    """

    pipeline: str
    run_id: str
    stage: str
    attempt: int = 1
    correlation_id: str | None = None
    step_run_id: str = field(default_factory=lambda: uuid4().hex)
    parent_outputs: Mapping[str, BaseModel] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def parent_output(self, name: str, model: type[ModelT] | None = None) -> ModelT | BaseModel:
        """Return the output produced by parent stage ``name``.

        Args:
            name: Name of a direct parent of the current stage.
            model: Optional model class the output is expected to be.

        Raises:
            KeyError: ``name`` is not a parent of this stage.
            TypeError: The output is not an instance of ``model``.
        """
        try:
            output = self.parent_outputs[name]
        except KeyError:
            raise KeyError(f"Stage '{self.stage}' has no parent output named '{name}'") from None
        if model is not None and not isinstance(output, model):
            raise TypeError(
                f"Output of '{name}' is {type(output).__name__}, expected {model.__name__}"
            )
        return output


class StageHandler(ABC, Generic[InputT, OutputT]):
    """Unit of work executed for one stage of a pipeline.

    Subclasses declare the models their input and output must conform to. The
    executor validates the trigger payload into ``input_model`` before every
    attempt and validates the returned value against ``output_model``.
    """

    input_model: type[InputT]
    output_model: type[OutputT]

    @abstractmethod
    def run(self, context: StageContext, payload: InputT) -> OutputT:
        """Execute the stage once."""

    def parse_input(self, raw: Mapping[str, Any] | BaseModel) -> InputT:
        if isinstance(raw, self.input_model):
            return raw
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        return self.input_model.model_validate(raw)

    def coerce_output(self, value: Any) -> OutputT:
        if isinstance(value, self.output_model):
            return value
        if isinstance(value, BaseModel):
            value = value.model_dump()
        return self.output_model.model_validate(value)

    def describe(self) -> dict[str, Any]:
        """Return the input and output JSON schemas of this handler."""
        return {
            "handler": type(self).__name__,
            "input_schema": self.input_model.model_json_schema(),
            "output_schema": self.output_model.model_json_schema(),
        }


class FunctionHandler(StageHandler[InputT, OutputT]):
    """Adapt a plain callable into a :class:`StageHandler`."""

    def __init__(
        self,
        func: Callable[[StageContext, InputT], OutputT | Mapping[str, Any]],
        *,
        input_model: type[InputT],
        output_model: type[OutputT],
        name: str | None = None,
    ) -> None:
        if not callable(func):
            raise TypeError("func must be callable")
        self._func = func
        self.input_model = input_model
        self.output_model = output_model
        self.name = name or getattr(func, "__name__", type(self).__name__)

    def run(self, context: StageContext, payload: InputT) -> OutputT:
        return self.coerce_output(self._func(context, payload))

    def describe(self) -> dict[str, Any]:
        description = super().describe()
        description["handler"] = self.name
        return description


def stage_handler(
    *, input_model: type[InputT], output_model: type[OutputT]
) -> Callable[[Callable[[StageContext, InputT], OutputT]], FunctionHandler[InputT, OutputT]]:
    """Decorator turning a function into a :class:`FunctionHandler`."""

    def decorator(func: Callable[[StageContext, InputT], OutputT]) -> FunctionHandler[InputT, OutputT]:
        return FunctionHandler(func, input_model=input_model, output_model=output_model)

    return decorator


class HandlerRegistry:
    """Registry of stage handlers keyed by handler name."""

    def __init__(self) -> None:
        self._handlers: dict[str, StageHandler[Any, Any]] = {}

    def register(
        self, key: str, handler: StageHandler[Any, Any], *, replace: bool = False
    ) -> StageHandler[Any, Any]:
        if not key or not key.strip():
            raise HandlerRegistryError("Handler key must be a non-empty string")
        if not isinstance(handler, StageHandler):
            raise HandlerRegistryError(f"Handler '{key}' must implement StageHandler")
        if key in self._handlers and not replace:
            raise HandlerRegistryError(f"Handler '{key}' is already registered")
        self._handlers[key] = handler
        logger.debug("orchestration.handler.registered", handler=key)
        return handler

    def get(self, key: str) -> StageHandler[Any, Any]:
        try:
            return self._handlers[key]
        except KeyError as exc:
            available = ", ".join(sorted(self._handlers)) or "none"
            raise HandlerRegistryError(
                f"Unknown stage handler '{key}'", detail=f"registered handlers: {available}"
            ) from exc

    def __contains__(self, key: object) -> bool:
        return key in self._handlers

    def keys(self) -> list[str]:
        return sorted(self._handlers)


__all__ = [
    "FunctionHandler",
    "HandlerRegistry",
    "HandlerRegistryError",
    "StageContext",
    "StageHandler",
    "stage_handler",
]
