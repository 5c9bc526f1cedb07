from __future__ import annotations

import pytest

from docflow.analysis import DocumentAnalyzer, InMemoryDocumentStore
from docflow.analysis.cost import estimate_cost
from docflow.config.settings import get_settings
from docflow.orchestration.events import AuditEventEmitter, AuditEventType, InMemoryAuditLog
from docflow.orchestration.executor import DagExecutor
from docflow.orchestration.graph import validate_pipeline
from docflow.orchestration.run import RunStatus, StageStatus
from docflow.orchestration.runtime import OrchestrationContext
from docflow.pipelines import (
    build_analyze_pipeline,
    build_document_processing_pipeline,
    build_invoice_pipeline,
    default_pipelines,
    default_registry,
)
from docflow.pipelines.simulation import DelayedHandler


@pytest.fixture
def executor(emitter: AuditEventEmitter):
    with DagExecutor(max_workers=10, audit=emitter) as pool:
        yield pool


def test_document_processing_pipeline_succeeds(executor: DagExecutor) -> None:
    graph = validate_pipeline(build_document_processing_pipeline())
    assert graph.children("extract") == ("parse-text", "parse-images", "parse-tables")

    report = executor.execute(graph, {"id": "doc-42", "file_path": "/uploads/doc-42.pdf"})

    assert report.status is RunStatus.SUCCEEDED
    assert len(report.stages) == 12
    assert report.stage("upload").output["document_id"] == "doc-42"
    assert report.stage("store-database").output["record_id"] == "doc_doc-42"
    assert report.stage("notify").output["notifications_sent"] == 2
    assert report.stage("transform").output["records_created"] == 342


def test_invoice_pipeline_fails_at_storage(executor: DagExecutor, audit_log: InMemoryAuditLog) -> None:
    report = executor.execute(validate_pipeline(build_invoice_pipeline()), {"id": "inv-1"})

    assert report.status is RunStatus.FAILED
    statuses = report.statuses()
    for step in ("step-1-receive", "step-2-validate", "step-3-extract", "step-4-calculate", "step-5-verify"):
        assert statuses[step] is StageStatus.SUCCEEDED
    assert statuses["step-6-store"] is StageStatus.FAILED
    assert statuses["step-7-notify"] is StageStatus.SKIPPED
    assert report.stage("step-6-store").error["detail"] == "database connection timeout after 30s"
    assert not any(event.stage_name == "step-7-notify" for event in audit_log.events)


def test_analyze_pipeline_end_to_end(executor: DagExecutor, audit_log: InMemoryAuditLog, make_pdf) -> None:
    data = make_pdf(["", "", ""])
    analyzer = DocumentAnalyzer(InMemoryDocumentStore({"scan": data}))
    graph = validate_pipeline(build_analyze_pipeline(analyzer))

    report = executor.execute(graph, {"id": "scan", "file_path": "/uploads/scan.pdf"})

    assert report.status is RunStatus.SUCCEEDED
    output = report.stage("analyze").output
    assert output["page_count"] == 3
    assert output["process_type"] == "simple"
    assert output["estimated_cost"] == pytest.approx(estimate_cost(3, len(data), False))
    completed = [e for e in audit_log.events if e.event_type is AuditEventType.STEP_COMPLETED]
    assert completed[0].to_record()["data"]["document_id"] == "scan"


def test_analyze_pipeline_retries_missing_documents(executor: DagExecutor) -> None:
    analyzer = DocumentAnalyzer(InMemoryDocumentStore())
    report = executor.execute(validate_pipeline(build_analyze_pipeline(analyzer)), {"id": "gone"})

    stage = report.stage("analyze")
    assert report.status is RunStatus.FAILED
    assert stage.attempts == 4
    assert stage.error["status"] == 404
    assert stage.error["extra"]["error_type"] == "DocumentNotFoundError"


def test_default_pipelines_register_and_subscribe() -> None:
    settings = get_settings()
    with OrchestrationContext(settings=settings) as context:
        context.register_all(default_pipelines(settings))
        assert [g.name for g in context.subscribers("document:uploaded")] == ["analyze-document"]
        assert [g.name for g in context.subscribers("invoice:process")] == [
            "invoice-processing-pipeline"
        ]
        assert [g.name for g in context.subscribers("document:process")] == [
            "document-processing-pipeline"
        ]


def test_default_registry_exposes_stage_handlers() -> None:
    registry = default_registry(get_settings())
    assert "analyze" in registry
    assert "parse-tables" in registry
    assert "step-6-store" in registry


def test_step_delay_wraps_handlers() -> None:
    definition = build_invoice_pipeline(step_delay_seconds=0.001)
    handler = definition.stages[0].handler
    assert isinstance(handler, DelayedHandler)
    assert handler.delay_seconds == pytest.approx(0.002)
    assert handler.describe()["handler"] == "InvoiceStep"
