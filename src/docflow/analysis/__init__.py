"""Document content analysis: page counting, text detection and pricing."""

from .analyzer import DocumentAnalyzer, sample_text
from .errors import DocumentAnalysisError, DocumentNotFoundError, DocumentParseError
from .models import AnalysisResult, DocumentInput, ProcessingMetrics
from .storage import DocumentStore, InMemoryDocumentStore, LocalDocumentStore

__all__ = [
    "AnalysisResult",
    "DocumentAnalysisError",
    "DocumentAnalyzer",
    "DocumentInput",
    "DocumentNotFoundError",
    "DocumentParseError",
    "DocumentStore",
    "InMemoryDocumentStore",
    "LocalDocumentStore",
    "ProcessingMetrics",
    "sample_text",
]
