"""Retry helpers for stage invocations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
)

from docflow.config.settings import RetryBackoffSettings


class NonRetriableError(Exception):
    """Marker base for failures that retrying cannot fix."""


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Backoff between attempts of a stage with a per-stage retry budget.

    A budget of ``N`` retries allows ``N + 1`` invocations in total. With
    ``initial_seconds`` set to zero attempts follow each other immediately.
    Interpreter exits and :class:`NonRetriableError` are never retried.
    """

    initial_seconds: float = 0.0
    max_seconds: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: RetryBackoffSettings) -> RetryPolicy:
        return cls(
            initial_seconds=settings.initial_seconds,
            max_seconds=settings.max_seconds,
            multiplier=settings.multiplier,
        )

    def retrying(
        self,
        retries: int,
        *,
        before_sleep: Callable[[RetryCallState], None] | None = None,
    ) -> Retrying:
        if retries < 0:
            raise ValueError("retries must be non-negative")
        wait = (
            wait_none()
            if self.initial_seconds <= 0
            else wait_exponential(
                multiplier=self.initial_seconds,
                exp_base=self.multiplier,
                max=self.max_seconds,
            )
        )
        return Retrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait,
            retry=retry_if_exception_type(Exception)
            & retry_if_not_exception_type(NonRetriableError),
            before_sleep=before_sleep,
            reraise=True,
        )


__all__ = ["NonRetriableError", "RetryPolicy"]
