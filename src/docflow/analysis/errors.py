"""Errors raised while resolving and parsing stored documents."""

from __future__ import annotations

from docflow.utils.errors import FoundationError


class DocumentAnalysisError(FoundationError):
    """Base class for analyzer failures."""

    reason = "analysis_error"

    def __init__(self, message: str, *, document_id: str, detail: str | None = None) -> None:
        super().__init__(message, detail=detail, extra={"document_id": document_id})
        self.document_id = document_id


class DocumentNotFoundError(DocumentAnalysisError):
    """The stored artifact for a document is missing or unreadable."""

    status = 404
    problem_type = "https://docflow.dev/problems/document-not-found"
    reason = "not_found"


class DocumentParseError(DocumentAnalysisError):
    """The stored artifact exists but is not a readable PDF."""

    status = 422
    problem_type = "https://docflow.dev/problems/document-parse-error"
    reason = "parse_error"


__all__ = ["DocumentAnalysisError", "DocumentNotFoundError", "DocumentParseError"]
