"""docflow: DAG pipelines for document ingestion and PDF content analysis."""

__version__ = "0.1.0"
