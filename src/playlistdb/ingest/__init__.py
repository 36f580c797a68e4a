"""Ingestion pipeline: normalize, deduplicate, batch and upsert playlist exports."""

from playlistdb.ingest.pipeline import IngestStats, PlaylistIngestor, load_json_file
from playlistdb.ingest.retry import RetryPolicy, retry_with_backoff

__all__ = ["IngestStats", "PlaylistIngestor", "RetryPolicy", "load_json_file", "retry_with_backoff"]
