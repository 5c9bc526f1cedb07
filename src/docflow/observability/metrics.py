"""Prometheus metrics for document analysis and pipeline orchestration.

Key Responsibilities:
    - Define Prometheus metrics for stage attempts, retries, durations and run
      outcomes
    - Track analyzer throughput and latency by processing strategy
    - Count audit log writes that could not be persisted

Collaborators:
    - Upstream: ``DocumentAnalyzer``, ``invoke_stage``, ``DagExecutor`` and the
      audit event emitter call the helpers below
    - Downstream: Prometheus scrapes the default registry, optionally served by
      :func:`start_metrics_server`

Thread Safety:
    - Thread-safe: All metric operations use atomic Prometheus operations
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

# ==============================================================================
# METRIC DEFINITIONS
# ==============================================================================

STAGE_ATTEMPTS_TOTAL = Counter(
    "docflow_stage_attempts_total",
    "Stage handler invocations by outcome",
    ["pipeline", "stage", "outcome"],
)

STAGE_RETRIES_TOTAL = Counter(
    "docflow_stage_retries_total",
    "Stage handler re-invocations scheduled after a failed attempt",
    ["pipeline", "stage"],
)

STAGE_DURATION_SECONDS = Histogram(
    "docflow_stage_duration_seconds",
    "Wall time of a stage including retries",
    ["pipeline", "stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

STAGE_TERMINAL_TOTAL = Counter(
    "docflow_stage_terminal_total",
    "Stages reaching a terminal status",
    ["pipeline", "status"],
)

RUNS_TOTAL = Counter(
    "docflow_runs_total",
    "Pipeline runs by terminal status",
    ["pipeline", "status"],
)

RUN_DURATION_SECONDS = Histogram(
    "docflow_run_duration_seconds",
    "Wall time of a pipeline run",
    ["pipeline"],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "docflow_audit_write_failures_total",
    "Audit events that could not be appended",
    ["sink"],
)

DOCUMENTS_ANALYZED_TOTAL = Counter(
    "docflow_documents_analyzed_total",
    "Documents analysed by processing strategy and text detection",
    ["process_type", "text_based"],
)

ANALYSIS_FAILURES_TOTAL = Counter(
    "docflow_analysis_failures_total",
    "Analyzer invocations that raised",
    ["reason"],
)

ANALYSIS_DURATION_SECONDS = Histogram(
    "docflow_analysis_duration_seconds",
    "Time spent analysing a single document",
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# ==============================================================================
# UTILITY FUNCTIONS
# ==============================================================================


def record_stage_attempt(pipeline: str, stage: str, outcome: str) -> None:
    """Count a single handler invocation (``success`` or ``error``)."""
    STAGE_ATTEMPTS_TOTAL.labels(pipeline=pipeline, stage=stage, outcome=outcome).inc()


def record_stage_retry(pipeline: str, stage: str) -> None:
    STAGE_RETRIES_TOTAL.labels(pipeline=pipeline, stage=stage).inc()


def observe_stage_duration(pipeline: str, stage: str, seconds: float) -> None:
    STAGE_DURATION_SECONDS.labels(pipeline=pipeline, stage=stage).observe(seconds)


def record_stage_terminal(pipeline: str, status: str) -> None:
    STAGE_TERMINAL_TOTAL.labels(pipeline=pipeline, status=status).inc()


def record_run(pipeline: str, status: str, seconds: float) -> None:
    """Record the terminal status and duration of a pipeline run."""
    RUNS_TOTAL.labels(pipeline=pipeline, status=status).inc()
    RUN_DURATION_SECONDS.labels(pipeline=pipeline).observe(seconds)


def record_audit_write_failure(sink: str) -> None:
    AUDIT_WRITE_FAILURES_TOTAL.labels(sink=sink).inc()


def record_document_analysis(process_type: str, text_based: bool, seconds: float) -> None:
    """Record a successful analysis with its strategy and latency."""
    DOCUMENTS_ANALYZED_TOTAL.labels(
        process_type=process_type, text_based="true" if text_based else "false"
    ).inc()
    ANALYSIS_DURATION_SECONDS.observe(seconds)


def record_analysis_failure(reason: str) -> None:
    ANALYSIS_FAILURES_TOTAL.labels(reason=reason).inc()


def start_metrics_server(port: int) -> None:
    """Serve the default registry over HTTP for Prometheus to scrape."""
    start_http_server(port)


__all__ = [
    "observe_stage_duration",
    "record_analysis_failure",
    "record_audit_write_failure",
    "record_document_analysis",
    "record_run",
    "record_stage_attempt",
    "record_stage_retry",
    "record_stage_terminal",
    "start_metrics_server",
]
