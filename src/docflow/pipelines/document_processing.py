"""Twelve-stage document processing pipeline with fan-out and fan-in.

upload -> validate -> extract -> {parse-text, parse-images, parse-tables}
-> transform -> {store-database, store-s3, index-search} -> notify -> cleanup

Stage bodies are simulated; they produce fixed, typed outputs so the
pipeline can exercise the executor and audit trail end to end.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from docflow.analysis import DocumentInput
from docflow.orchestration.graph import PipelineDefinition, StageDefinition
from docflow.orchestration.stages import StageContext, stage_handler

from .simulation import simulated

PIPELINE_NAME = "document-processing-pipeline"
TRIGGER_EVENT = "document:process"


class UploadOutput(BaseModel):
    status: str = "completed"
    document_id: str
    file_size: int
    uploaded_at: datetime


class ValidateOutput(BaseModel):
    status: str = "completed"
    valid: bool
    file_type: str
    page_count: int


class ExtractOutput(BaseModel):
    status: str = "completed"
    text_extracted: bool
    image_count: int
    table_count: int


class ParseOutput(BaseModel):
    status: str = "completed"
    word_count: int | None = None
    language: str | None = None
    entities: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    tables: list[dict[str, Any]] = Field(default_factory=list)


class TransformOutput(BaseModel):
    status: str = "completed"
    normalized: bool
    enriched: bool
    records_created: int


class StorageOutput(BaseModel):
    status: str = "completed"
    location: str
    record_id: str | None = None
    indexed: bool = False


class NotifyOutput(BaseModel):
    status: str = "completed"
    notified: list[str]
    notifications_sent: int


class CleanupOutput(BaseModel):
    status: str = "completed"
    temp_files_removed: int
    cache_cleared: bool


# ==============================================================================
# STAGES
# ==============================================================================


@stage_handler(input_model=DocumentInput, output_model=UploadOutput)
def upload(context: StageContext, document: DocumentInput) -> UploadOutput:
    return UploadOutput(
        document_id=document.document_id,
        file_size=2_457_600,
        uploaded_at=datetime.now(timezone.utc),
    )


@stage_handler(input_model=DocumentInput, output_model=ValidateOutput)
def validate(context: StageContext, document: DocumentInput) -> ValidateOutput:
    return ValidateOutput(valid=True, file_type="application/pdf", page_count=47)


@stage_handler(input_model=DocumentInput, output_model=ExtractOutput)
def extract(context: StageContext, document: DocumentInput) -> ExtractOutput:
    return ExtractOutput(text_extracted=True, image_count=12, table_count=8)


@stage_handler(input_model=DocumentInput, output_model=ParseOutput)
def parse_text(context: StageContext, document: DocumentInput) -> ParseOutput:
    return ParseOutput(
        word_count=15_234,
        language="en",
        entities=["Acme Corporation", "John Smith", "New York", "Q4 2024"],
    )


@stage_handler(input_model=DocumentInput, output_model=ParseOutput)
def parse_images(context: StageContext, document: DocumentInput) -> ParseOutput:
    return ParseOutput(images=["chart_revenue.png", "logo.png", "diagram_architecture.png"])


@stage_handler(input_model=DocumentInput, output_model=ParseOutput)
def parse_tables(context: StageContext, document: DocumentInput) -> ParseOutput:
    return ParseOutput(
        tables=[
            {"name": "Revenue Summary", "rows": 24, "columns": 6},
            {"name": "Employee Data", "rows": 156, "columns": 8},
        ]
    )


@stage_handler(input_model=DocumentInput, output_model=TransformOutput)
def transform(context: StageContext, document: DocumentInput) -> TransformOutput:
    for parent in ("parse-text", "parse-images", "parse-tables"):
        context.parent_output(parent, ParseOutput)
    return TransformOutput(normalized=True, enriched=True, records_created=342)


@stage_handler(input_model=DocumentInput, output_model=StorageOutput)
def store_database(context: StageContext, document: DocumentInput) -> StorageOutput:
    return StorageOutput(
        location="postgresql://documents/", record_id=f"doc_{document.document_id}"
    )


@stage_handler(input_model=DocumentInput, output_model=StorageOutput)
def store_s3(context: StageContext, document: DocumentInput) -> StorageOutput:
    return StorageOutput(location=f"s3://documents-bucket/{document.document_id}.pdf")


@stage_handler(input_model=DocumentInput, output_model=StorageOutput)
def index_search(context: StageContext, document: DocumentInput) -> StorageOutput:
    return StorageOutput(location="elasticsearch://documents/", indexed=True)


@stage_handler(input_model=DocumentInput, output_model=NotifyOutput)
def notify(context: StageContext, document: DocumentInput) -> NotifyOutput:
    recipients = ["user@example.com", "admin@example.com"]
    return NotifyOutput(notified=recipients, notifications_sent=len(recipients))


@stage_handler(input_model=DocumentInput, output_model=CleanupOutput)
def cleanup(context: StageContext, document: DocumentInput) -> CleanupOutput:
    return CleanupOutput(temp_files_removed=15, cache_cleared=True)


# name, handler, parents, relative duration
_STAGES = (
    ("upload", upload, (), 2),
    ("validate", validate, ("upload",), 2),
    ("extract", extract, ("validate",), 3),
    ("parse-text", parse_text, ("extract",), 3),
    ("parse-images", parse_images, ("extract",), 4),
    ("parse-tables", parse_tables, ("extract",), 3),
    ("transform", transform, ("parse-text", "parse-images", "parse-tables"), 2),
    ("store-database", store_database, ("transform",), 2),
    ("store-s3", store_s3, ("transform",), 3),
    ("index-search", index_search, ("transform",), 2),
    ("notify", notify, ("store-database", "store-s3", "index-search"), 1),
    ("cleanup", cleanup, ("notify",), 1),
)


def build_document_processing_pipeline(*, step_delay_seconds: float = 0.0) -> PipelineDefinition:
    return PipelineDefinition(
        name=PIPELINE_NAME,
        description="Upload, parse in parallel, store in parallel, notify and clean up",
        on_events=(TRIGGER_EVENT,),
        stages=tuple(
            StageDefinition(
                name=name,
                handler=simulated(handler, weight, step_delay_seconds),
                parents=parents,
            )
            for name, handler, parents, weight in _STAGES
        ),
    )


__all__ = [
    "CleanupOutput",
    "ExtractOutput",
    "NotifyOutput",
    "PIPELINE_NAME",
    "ParseOutput",
    "StorageOutput",
    "TRIGGER_EVENT",
    "TransformOutput",
    "UploadOutput",
    "ValidateOutput",
    "build_document_processing_pipeline",
]
