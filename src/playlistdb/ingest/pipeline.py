"""Ingestion orchestrator for playlist exports.

Loads the source documents, then writes each entity kind in dependency
order (artists, albums, tracks, playlists, playlist tracks, audio features).
Every kind goes through the same stages: extract unique records, normalize,
split into batches, and upsert each batch under the retry policy.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from playlistdb.errors import FatalIOError, TransientStoreError
from playlistdb.ingest.batching import process_batches
from playlistdb.ingest.dedup import (
    extract_albums,
    extract_artists,
    extract_audio_features,
    extract_playlist_tracks,
    extract_playlists,
    extract_tracks,
)
from playlistdb.ingest.retry import RetryPolicy
from playlistdb.storage.models import EntityKind, Record
from playlistdb.storage.upsert import UpsertExecutor

if TYPE_CHECKING:
    from playlistdb.storage.database import Database

log = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass
class IngestStats:
    artists: int = 0
    albums: int = 0
    tracks: int = 0
    playlists: int = 0
    playlist_tracks: int = 0
    audio_features: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    def add(self, kind: EntityKind, count: int) -> None:
        setattr(self, kind.value, getattr(self, kind.value) + count)

    def count(self, kind: EntityKind) -> int:
        return getattr(self, kind.value)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return round((end - self.started_at).total_seconds(), 3)

    def as_dict(self) -> dict[str, int]:
        return {kind.value: self.count(kind) for kind in EntityKind}

    def to_json(self) -> str:
        return json.dumps({**self.as_dict(), "duration_seconds": self.duration_seconds})


def load_json_file(path: Path | str) -> Any:
    """Read and parse a JSON file, raising :class:`FatalIOError` on any failure."""
    path = Path(path)
    log.info("file_loading", path=str(path))
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        log.error("file_load_failed", path=str(path), error=str(exc))
        raise FatalIOError(f"Cannot load {path}: {exc}") from exc
    log.info("file_loaded", path=str(path), size=len(text))
    return data


class PlaylistIngestor:
    """Runs the ingestion pipeline against an injected store."""

    def __init__(
        self,
        db: Database,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._executor = UpsertExecutor(db)
        self._batch_size = batch_size
        self._retry = retry_policy or RetryPolicy(retry_on=(TransientStoreError,))
        self.stats = IngestStats()

    async def ingest(
        self,
        playlist_file: Path | str,
        audio_features_file: Path | str | None = None,
        batch_size: int | None = None,
    ) -> IngestStats:
        """Ingest a playlist export and, optionally, an audio-features export.

        Any error aborts the run and propagates; batches committed before the
        failure stay in the store and ``self.stats`` holds their counts.
        """
        size = batch_size or self._batch_size
        self.stats = IngestStats()
        log.info(
            "ingest_start",
            playlist_file=str(playlist_file),
            audio_features_file=str(audio_features_file) if audio_features_file else None,
            batch_size=size,
        )

        try:
            playlist_data = load_json_file(playlist_file)
            if not isinstance(playlist_data, Mapping):
                raise FatalIOError(f"{playlist_file}: expected a JSON object")
            features_data = None
            if audio_features_file:
                features_data = load_json_file(audio_features_file)
                if not isinstance(features_data, Mapping | list):
                    raise FatalIOError(f"{audio_features_file}: expected a JSON object or array")

            await self._process(EntityKind.ARTIST, list(extract_artists(playlist_data).values()), size)
            await self._process(EntityKind.ALBUM, list(extract_albums(playlist_data).values()), size)
            await self._process(EntityKind.TRACK, list(extract_tracks(playlist_data).values()), size)
            await self._process(EntityKind.PLAYLIST, list(extract_playlists(playlist_data).values()), size)
            await self._process(EntityKind.PLAYLIST_TRACK, extract_playlist_tracks(playlist_data), size)
            if features_data is not None:
                await self._process(EntityKind.AUDIO_FEATURES, extract_audio_features(features_data), size)
        except Exception as exc:
            self.stats.finished_at = datetime.now(UTC)
            log.error("ingest_failed", error=str(exc), **self.stats.as_dict())
            raise

        self.stats.finished_at = datetime.now(UTC)
        log.info(
            "ingest_completed",
            duration_seconds=self.stats.duration_seconds,
            **self.stats.as_dict(),
        )
        return self.stats

    async def _process(self, kind: EntityKind, records: Sequence[Record], batch_size: int) -> None:
        log.info("entities_found", kind=kind.value, count=len(records))

        async def _upsert(chunk: list[Record], batch_number: int) -> int:
            count = await self._retry.run(lambda: self._executor.upsert_batch(chunk, kind))
            self.stats.add(kind, count)
            return count

        await process_batches(records, batch_size, _upsert)
        log.info("entities_processed", kind=kind.value, count=self.stats.count(kind))
