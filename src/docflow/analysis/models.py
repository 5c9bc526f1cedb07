"""Typed inputs and outputs of the document analyzer."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from .cost import ProcessType, select_process_type


class DocumentInput(BaseModel):
    """Trigger payload identifying an uploaded document.

    Upload events historically carried the identifier under ``id``; both
    spellings are accepted.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    document_id: str = Field(
        min_length=1, validation_alias=AliasChoices("document_id", "id")
    )
    file_path: str = ""


class AnalysisResult(BaseModel):
    """Outcome of analysing one stored document."""

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(min_length=1)
    page_count: int = Field(ge=0)
    file_size_bytes: int = Field(ge=0)
    process_type: ProcessType
    estimated_cost: float = Field(ge=0.0)

    @model_validator(mode="after")
    def _process_type_matches_pages(self) -> AnalysisResult:
        expected = select_process_type(self.page_count)
        if self.process_type != expected:
            raise ValueError(
                f"process_type '{self.process_type}' inconsistent with {self.page_count} pages"
            )
        return self


class ProcessingMetrics(BaseModel):
    """Diagnostics reported next to an :class:`AnalysisResult`."""

    model_config = ConfigDict(frozen=True)

    is_text_based: bool
    pages_sampled: int = Field(ge=0)
    avg_chars_per_page: int = Field(ge=0)
    analysis_time_ms: float = Field(ge=0.0)


__all__ = ["AnalysisResult", "DocumentInput", "ProcessingMetrics"]
