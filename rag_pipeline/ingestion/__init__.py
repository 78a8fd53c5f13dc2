"""Ingestion package.

- pipeline: IngestionPipeline, the chunk -> embed -> persist flow with status tracking.
- ingest_url: CLI job that fetches a web page and ingests its text into a collection.
"""
from rag_pipeline.ingestion.pipeline import IngestionPipeline

__all__ = ["IngestionPipeline"]
