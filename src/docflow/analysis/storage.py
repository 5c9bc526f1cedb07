"""Read-only access to uploaded document bytes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path

import structlog

from .errors import DocumentNotFoundError

logger = structlog.get_logger(__name__)


def _check_document_id(document_id: str) -> None:
    if not document_id or document_id in {".", ".."} or "/" in document_id or "\\" in document_id:
        raise DocumentNotFoundError(
            "Document identifier cannot be resolved",
            document_id=document_id,
            detail="identifier must be a plain file name",
        )


class DocumentStore(ABC):
    """Abstract source of stored document bytes keyed by document identifier."""

    @abstractmethod
    def locate(self, document_id: str) -> str:
        """Return a human readable location for ``document_id``."""

    @abstractmethod
    def read_bytes(self, document_id: str) -> bytes:
        """Return the stored bytes or raise :class:`DocumentNotFoundError`."""


class LocalDocumentStore(DocumentStore):
    """Documents stored as ``<root>/<document_id>.<extension>`` on local disk."""

    def __init__(self, root: str | Path, *, extension: str = "pdf") -> None:
        self._root = Path(root)
        self._extension = extension.lstrip(".")

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, document_id: str) -> Path:
        _check_document_id(document_id)
        return self._root / f"{document_id}.{self._extension}"

    def locate(self, document_id: str) -> str:
        return str(self.resolve(document_id))

    def read_bytes(self, document_id: str) -> bytes:
        path = self.resolve(document_id)
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.debug("analysis.storage.read_failed", path=str(path), error=str(exc))
            raise DocumentNotFoundError(
                "Document not found in storage",
                document_id=document_id,
                detail=f"{path}: {exc.strerror or exc}",
            ) from exc
        logger.debug("analysis.storage.read", path=str(path), size=len(data))
        return data


class InMemoryDocumentStore(DocumentStore):
    """Dictionary backed store used for embedding and tests."""

    def __init__(self, documents: Mapping[str, bytes] | None = None) -> None:
        self._documents: dict[str, bytes] = dict(documents or {})

    def put(self, document_id: str, data: bytes) -> None:
        _check_document_id(document_id)
        self._documents[document_id] = bytes(data)

    def locate(self, document_id: str) -> str:
        return f"memory://{document_id}"

    def read_bytes(self, document_id: str) -> bytes:
        _check_document_id(document_id)
        try:
            return self._documents[document_id]
        except KeyError as exc:
            raise DocumentNotFoundError(
                "Document not found in storage", document_id=document_id
            ) from exc


__all__ = ["DocumentStore", "InMemoryDocumentStore", "LocalDocumentStore"]
