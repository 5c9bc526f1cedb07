from __future__ import annotations

from collections.abc import Callable, Sequence

import pytest

from docflow.config.settings import get_settings
from docflow.orchestration.events import AuditEventEmitter, InMemoryAuditLog


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("DF_ENV", "dev")
    monkeypatch.setenv("DF_AUDIT__PATH", str(tmp_path / "workflow-events.jsonl"))
    monkeypatch.setenv("DF_STORAGE__ROOT", str(tmp_path / "uploads"))
    monkeypatch.delenv("DF_OBSERVABILITY__METRICS__PORT", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def emitter(audit_log: InMemoryAuditLog) -> AuditEventEmitter:
    return AuditEventEmitter(audit_log)


def build_pdf(pages: Sequence[str]) -> bytes:
    """Assemble a minimal PDF with one Helvetica text line per page.

    An empty string produces a page without any content stream text.
    """
    count = len(pages)
    kids = " ".join(f"{4 + 2 * index} 0 R" for index in range(count))
    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {count} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for index, text in enumerate(pages):
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                "/Resources << /Font << /F1 3 0 R >> >> "
                f"/Contents {5 + 2 * index} 0 R >>"
            ).encode()
        )
        stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode() if text else b""
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_offset = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\n" % (len(objects) + 1)
    out += b"startxref\n%d\n%%%%EOF\n" % xref_offset
    return bytes(out)


@pytest.fixture
def make_pdf() -> Callable[[Sequence[str]], bytes]:
    return build_pdf


@pytest.fixture
def text_line() -> str:
    """A single line of well over one hundred extractable characters."""
    return "The quick brown fox jumps over the lazy dog while the analyzer counts characters " * 2
