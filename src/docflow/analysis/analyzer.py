"""PDF content analysis used to decide how a document is processed.

Key Responsibilities:
    - Resolve the stored bytes of an uploaded document by its identifier
    - Count pages and detect whether the document carries extractable text
    - Derive an estimated processing cost and a processing strategy

Collaborators:
    - Upstream: The ``analyze`` stage of the analyze-document pipeline and the
      ``docflow analyze`` command
    - Downstream: :class:`~docflow.analysis.storage.DocumentStore` for bytes,
      ``pypdf`` for parsing, :mod:`docflow.analysis.cost` for pricing rules

Side Effects:
    - Reads one stored file per call; emits Prometheus metrics and logs

Thread Safety:
    - Thread-safe; the analyzer holds no mutable state and every call parses
      its own copy of the document bytes

Performance Characteristics:
    - Reads the whole file once and extracts text from at most three pages
"""

from __future__ import annotations

from collections.abc import Sequence
from io import BytesIO
from time import perf_counter
from typing import Protocol

import structlog
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from docflow.config.settings import StorageSettings
from docflow.observability.metrics import record_analysis_failure, record_document_analysis

from .cost import average_chars_per_page, estimate_cost, is_text_based, select_process_type
from .errors import DocumentAnalysisError, DocumentParseError
from .models import AnalysisResult, ProcessingMetrics
from .storage import DocumentStore, LocalDocumentStore

logger = structlog.get_logger(__name__)

DEFAULT_SAMPLE_PAGES = 3

# Exceptions pypdf surfaces for structurally broken files besides its own hierarchy.
_PARSE_ERRORS = (PyPdfError, ValueError, KeyError, TypeError, AttributeError, IndexError)


class TextPage(Protocol):
    def extract_text(self) -> str: ...


def sample_text(pages: Sequence[TextPage], *, limit: int = DEFAULT_SAMPLE_PAGES) -> tuple[int, int]:
    """Extract text from the first ``limit`` pages.

    Returns:
        ``(total_chars, sampled_pages)`` where pages whose extraction raised are
        skipped and not counted.
    """
    total_chars = 0
    sampled = 0
    for index in range(min(limit, len(pages))):
        try:
            text = pages[index].extract_text() or ""
        except Exception as exc:
            logger.warning("analysis.page.extract_failed", page=index, error=str(exc))
            continue
        total_chars += len(text)
        sampled += 1
    return total_chars, sampled


class DocumentAnalyzer:
    """Analyse stored PDFs and price their processing."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        sample_pages: int = DEFAULT_SAMPLE_PAGES,
    ) -> None:
        if sample_pages < 1:
            raise ValueError("sample_pages must be at least 1")
        self._store = store
        self._sample_pages = sample_pages

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> DocumentAnalyzer:
        store = LocalDocumentStore(settings.root, extension=settings.extension)
        return cls(store, sample_pages=settings.sample_pages)

    @property
    def store(self) -> DocumentStore:
        return self._store

    def analyze(self, document_id: str, file_path: str | None = None) -> AnalysisResult:
        """Analyse a document and return its :class:`AnalysisResult`.

        Raises:
            DocumentNotFoundError: The stored artifact is missing or unreadable.
            DocumentParseError: The artifact is not a readable PDF.
        """
        result, _ = self.analyze_with_metrics(document_id, file_path)
        return result

    def analyze_with_metrics(
        self, document_id: str, file_path: str | None = None
    ) -> tuple[AnalysisResult, ProcessingMetrics]:
        started = perf_counter()
        logger.info("analysis.document.start", document_id=document_id, file_path=file_path)
        try:
            data = self._store.read_bytes(document_id)
            page_count, total_chars, sampled = self._inspect(document_id, data)
        except DocumentAnalysisError as exc:
            record_analysis_failure(exc.reason)
            logger.warning(
                "analysis.document.failure",
                document_id=document_id,
                error=exc.problem.title,
                detail=exc.problem.detail,
            )
            raise

        text_based = is_text_based(total_chars, sampled)
        result = AnalysisResult(
            document_id=document_id,
            page_count=page_count,
            file_size_bytes=len(data),
            process_type=select_process_type(page_count),
            estimated_cost=estimate_cost(page_count, len(data), text_based),
        )
        elapsed = perf_counter() - started
        metrics = ProcessingMetrics(
            is_text_based=text_based,
            pages_sampled=sampled,
            avg_chars_per_page=average_chars_per_page(total_chars, sampled),
            analysis_time_ms=round(elapsed * 1000, 3),
        )
        record_document_analysis(result.process_type, text_based, elapsed)
        logger.info(
            "analysis.document.complete",
            document_id=document_id,
            page_count=result.page_count,
            file_size_bytes=result.file_size_bytes,
            process_type=result.process_type,
            estimated_cost=result.estimated_cost,
            text_based=text_based,
            duration_ms=metrics.analysis_time_ms,
        )
        return result, metrics

    def _inspect(self, document_id: str, data: bytes) -> tuple[int, int, int]:
        try:
            reader = PdfReader(BytesIO(data))
            page_count = len(reader.pages)
        except _PARSE_ERRORS as exc:
            raise DocumentParseError(
                "Document could not be parsed as PDF",
                document_id=document_id,
                detail=str(exc) or type(exc).__name__,
            ) from exc
        total_chars, sampled = sample_text(reader.pages, limit=self._sample_pages)
        return page_count, total_chars, sampled


__all__ = ["DEFAULT_SAMPLE_PAGES", "DocumentAnalyzer", "TextPage", "sample_text"]
