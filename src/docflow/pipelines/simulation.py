"""Helpers for the bundled demonstration pipelines."""

from __future__ import annotations

import time
from typing import Any

from docflow.orchestration.stages import StageContext, StageHandler


class DelayedHandler(StageHandler[Any, Any]):
    """Sleep ``unit_seconds * weight`` before delegating to ``inner``.

    Simulated stages use relative weights so a single setting stretches the
    whole pipeline to a watchable pace.
    """

    def __init__(self, inner: StageHandler[Any, Any], *, weight: float, unit_seconds: float) -> None:
        self.inner = inner
        self.input_model = inner.input_model
        self.output_model = inner.output_model
        self.delay_seconds = max(0.0, weight * unit_seconds)

    def run(self, context: StageContext, payload: Any) -> Any:
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        return self.inner.run(context, payload)

    def describe(self) -> dict[str, Any]:
        return self.inner.describe()


def simulated(handler: StageHandler[Any, Any], weight: float, unit_seconds: float) -> StageHandler[Any, Any]:
    if unit_seconds <= 0:
        return handler
    return DelayedHandler(handler, weight=weight, unit_seconds=unit_seconds)


__all__ = ["DelayedHandler", "simulated"]
