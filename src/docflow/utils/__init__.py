"""Utility modules shared across docflow."""

from .errors import FoundationError, ProblemDetail


__all__ = ["FoundationError", "ProblemDetail"]
