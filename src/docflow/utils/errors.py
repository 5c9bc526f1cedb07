"""Problem detail helpers for consistent error reporting across docflow.

Key Responsibilities:
    - Provide RFC 7807 compliant data structures used when reporting analyzer,
      registration and stage failures
    - Supply a base exception that carries problem details so run reports and
      the command line can serialise failures uniformly

Collaborators:
    - Upstream: Analyzer, pipeline graph and step contract raise subclasses of
      ``FoundationError``
    - Downstream: ``RunReport`` and the CLI serialise :class:`ProblemDetail`
      instances

Side Effects:
    - None; helpers are pure data containers

Thread Safety:
    - Thread-safe; instances are not shared between runs once raised
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

# ==============================================================================
# TYPE DEFINITIONS
# ==============================================================================

__all__ = ["FoundationError", "ProblemDetail"]


@dataclass(slots=True)
class ProblemDetail:
    """Lightweight problem details object compliant with RFC 7807."""

    title: str
    status: int
    detail: str | None = None
    type: str = "about:blank"
    instance: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def model_dump(self) -> dict[str, Any]:
        """Return a dictionary representation with optional fields dropped."""
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        if not payload.get("extra"):
            payload.pop("extra", None)
        return payload


class FoundationError(RuntimeError):
    """Base exception that carries a :class:`ProblemDetail` instance."""

    status: int = 500
    problem_type: str = "about:blank"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        detail: str | None = None,
        instance: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        """Initialise the exception with structured problem detail attributes.

        Args:
            message: Human readable error summary.
            status: Status code associated with the problem, defaulting to the
                class level ``status``.
            detail: Optional detailed description of the failure.
            instance: Optional reference identifying the specific occurrence.
            extra: Additional attributes included in the serialized payload.
        """
        super().__init__(message)
        self.problem = ProblemDetail(
            title=message,
            status=status if status is not None else self.status,
            detail=detail,
            type=self.problem_type,
            instance=instance,
            extra=dict(extra or {}),
        )
