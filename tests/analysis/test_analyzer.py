from __future__ import annotations

import pytest
from pydantic import ValidationError

from docflow.analysis import (
    AnalysisResult,
    DocumentAnalyzer,
    DocumentInput,
    DocumentNotFoundError,
    DocumentParseError,
    InMemoryDocumentStore,
    LocalDocumentStore,
    sample_text,
)
from docflow.analysis.cost import estimate_cost
from docflow.config.settings import StorageSettings


class _Page:
    def __init__(self, text: str | None = None, error: Exception | None = None) -> None:
        self._text = text
        self._error = error

    def extract_text(self) -> str:
        if self._error is not None:
            raise self._error
        return self._text or ""


def test_missing_document_raises_not_found(tmp_path) -> None:
    analyzer = DocumentAnalyzer(LocalDocumentStore(tmp_path))
    with pytest.raises(DocumentNotFoundError) as excinfo:
        analyzer.analyze("does-not-exist")
    assert excinfo.value.problem.status == 404
    assert excinfo.value.document_id == "does-not-exist"


@pytest.mark.parametrize("document_id", ["", ".", "..", "../etc/passwd", "a/b", "a\\b"])
def test_unresolvable_identifiers_are_not_found(tmp_path, document_id: str) -> None:
    analyzer = DocumentAnalyzer(LocalDocumentStore(tmp_path))
    with pytest.raises(DocumentNotFoundError):
        analyzer.analyze(document_id)


def test_garbage_bytes_raise_parse_error(tmp_path) -> None:
    (tmp_path / "broken.pdf").write_bytes(b"this is not a pdf at all")
    analyzer = DocumentAnalyzer(LocalDocumentStore(tmp_path))
    with pytest.raises(DocumentParseError) as excinfo:
        analyzer.analyze("broken")
    assert excinfo.value.problem.status == 422


def test_blank_pages_are_image_based(tmp_path, make_pdf) -> None:
    data = make_pdf(["", "", ""])
    (tmp_path / "scan.pdf").write_bytes(data)
    analyzer = DocumentAnalyzer(LocalDocumentStore(tmp_path))

    result, metrics = analyzer.analyze_with_metrics("scan", "/uploads/scan.pdf")

    assert result.page_count == 3
    assert result.file_size_bytes == len(data)
    assert result.process_type == "simple"
    assert result.estimated_cost == pytest.approx(estimate_cost(3, len(data), False))
    assert metrics.is_text_based is False
    assert metrics.pages_sampled == 3
    assert metrics.avg_chars_per_page == 0


def test_text_pages_are_text_based(make_pdf, text_line: str) -> None:
    data = make_pdf([text_line] * 12)
    analyzer = DocumentAnalyzer(InMemoryDocumentStore({"report": data}))

    result, metrics = analyzer.analyze_with_metrics("report")

    assert result.page_count == 12
    assert result.process_type == "parallel"
    assert metrics.is_text_based is True
    assert metrics.pages_sampled == 3
    assert metrics.avg_chars_per_page > 100
    assert result.estimated_cost == pytest.approx(estimate_cost(12, len(data), True))


def test_analysis_is_idempotent(make_pdf, text_line: str) -> None:
    analyzer = DocumentAnalyzer(InMemoryDocumentStore({"doc": make_pdf([text_line, ""])}))
    assert analyzer.analyze("doc") == analyzer.analyze("doc")


def test_from_settings_reads_configured_root(tmp_path, make_pdf) -> None:
    (tmp_path / "doc.PDF").write_bytes(make_pdf([""]))
    settings = StorageSettings(root=tmp_path, extension=".PDF")
    analyzer = DocumentAnalyzer.from_settings(settings)
    assert analyzer.analyze("doc").page_count == 1


def test_sample_text_skips_pages_that_fail() -> None:
    pages = [_Page("a" * 150), _Page(error=RuntimeError("bad font")), _Page("b" * 90), _Page("c" * 500)]
    total, sampled = sample_text(pages, limit=3)
    assert total == 240
    assert sampled == 2


def test_sample_text_with_fewer_pages_than_limit() -> None:
    assert sample_text([_Page("xyz")], limit=3) == (3, 1)
    assert sample_text([], limit=3) == (0, 0)


def test_analysis_result_enforces_process_type() -> None:
    with pytest.raises(ValidationError):
        AnalysisResult(
            document_id="doc",
            page_count=10,
            file_size_bytes=1,
            process_type="simple",
            estimated_cost=1.0,
        )


def test_document_input_accepts_id_alias() -> None:
    assert DocumentInput.model_validate({"id": "abc"}).document_id == "abc"
    assert DocumentInput.model_validate({"document_id": "abc", "file_path": "/x"}).file_path == "/x"
    with pytest.raises(ValidationError):
        DocumentInput.model_validate({"file_path": "/x"})
