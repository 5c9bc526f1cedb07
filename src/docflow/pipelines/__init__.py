"""Pipelines bundled with docflow."""

from __future__ import annotations

from docflow.analysis import DocumentAnalyzer
from docflow.config.settings import AppSettings
from docflow.orchestration.graph import PipelineDefinition
from docflow.orchestration.stages import HandlerRegistry

from .analyze_document import build_analyze_pipeline
from .document_processing import build_document_processing_pipeline
from .invoice_processing import build_invoice_pipeline


def default_pipelines(
    settings: AppSettings, *, analyzer: DocumentAnalyzer | None = None
) -> list[PipelineDefinition]:
    """Definitions for every bundled pipeline configured from ``settings``."""
    analyzer = analyzer or DocumentAnalyzer.from_settings(settings.storage)
    delay = settings.demo.step_delay_seconds
    return [
        build_analyze_pipeline(analyzer),
        build_document_processing_pipeline(step_delay_seconds=delay),
        build_invoice_pipeline(step_delay_seconds=delay),
    ]


def default_registry(
    settings: AppSettings, *, analyzer: DocumentAnalyzer | None = None
) -> HandlerRegistry:
    """Handlers of the bundled pipelines keyed by stage name, for YAML topologies."""
    registry = HandlerRegistry()
    for definition in default_pipelines(settings, analyzer=analyzer):
        for stage in definition.stages:
            if stage.name not in registry:
                registry.register(stage.name, stage.handler)
    return registry


__all__ = [
    "build_analyze_pipeline",
    "build_document_processing_pipeline",
    "build_invoice_pipeline",
    "default_pipelines",
    "default_registry",
]
