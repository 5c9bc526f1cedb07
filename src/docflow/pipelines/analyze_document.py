"""Single-stage pipeline analysing freshly uploaded documents."""

from __future__ import annotations

from docflow.analysis import AnalysisResult, DocumentAnalyzer, DocumentInput
from docflow.orchestration.graph import PipelineDefinition, StageDefinition
from docflow.orchestration.stages import StageContext, StageHandler

PIPELINE_NAME = "analyze-document"
TRIGGER_EVENT = "document:uploaded"
ANALYZE_RETRIES = 3


class AnalyzeDocumentHandler(StageHandler[DocumentInput, AnalysisResult]):
    """Run the :class:`DocumentAnalyzer` for the triggering document."""

    input_model = DocumentInput
    output_model = AnalysisResult

    def __init__(self, analyzer: DocumentAnalyzer) -> None:
        self._analyzer = analyzer

    def run(self, context: StageContext, payload: DocumentInput) -> AnalysisResult:
        return self._analyzer.analyze(payload.document_id, payload.file_path or None)


def build_analyze_pipeline(
    analyzer: DocumentAnalyzer, *, retries: int = ANALYZE_RETRIES
) -> PipelineDefinition:
    return PipelineDefinition(
        name=PIPELINE_NAME,
        description="Count pages, detect text and estimate processing cost",
        on_events=(TRIGGER_EVENT,),
        stages=(
            StageDefinition(
                name="analyze",
                handler=AnalyzeDocumentHandler(analyzer),
                retries=retries,
                description="Analyse the stored PDF",
            ),
        ),
    )


__all__ = [
    "ANALYZE_RETRIES",
    "AnalyzeDocumentHandler",
    "PIPELINE_NAME",
    "TRIGGER_EVENT",
    "build_analyze_pipeline",
]
