"""End-to-end tests for the ingestion orchestrator."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from payloads import album, artist, features, item, playlist, track, write_json
from playlistdb.errors import BatchProcessingError, FatalIOError, TransientStoreError, ValidationError
from playlistdb.ingest.pipeline import IngestStats, PlaylistIngestor, load_json_file
from playlistdb.ingest.retry import RetryPolicy
from playlistdb.storage.database import Database
from playlistdb.storage.models import EntityKind
from playlistdb.storage.upsert import UpsertExecutor

_NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0, retry_on=(TransientStoreError,))


def _shared_track_document() -> dict:
    """Two playlists that share track t1 (album al1, artist ar1)."""
    shared = track("t1", name="Shared", popularity=70, album=album("al1", artists=[artist("ar1")]), artists=[artist("ar1")])
    solo = track("t2", name="Solo", popularity=40, artists=[artist("ar2")])
    return {
        "playlists": [
            playlist("p1", name="Morning", items=[item(shared), item(solo)]),
            playlist("p2", name="Evening", items=[item(shared, added_by="user2")]),
        ]
    }


async def _snapshot(db: Database) -> dict[str, list[dict]]:
    tables = ["artists", "albums", "tracks", "playlists", "playlist_tracks", "audio_features"]
    snapshot = {}
    for table in tables:
        rows = await db.query(f"SELECT * FROM {table}")  # noqa: S608
        snapshot[table] = sorted(
            ({k: r[k] for k in r.keys() if k not in ("created_at", "updated_at")} for r in rows),
            key=lambda d: json.dumps(d, sort_keys=True),
        )
    return snapshot


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_two_playlists_sharing_a_track(db: Database, tmp_path: Path):
    source = write_json(tmp_path / "playlists.json", _shared_track_document())

    stats = await PlaylistIngestor(db, retry_policy=_NO_WAIT).ingest(source)

    assert stats.as_dict() == {
        "artists": 2,
        "albums": 1,
        "tracks": 2,
        "playlists": 2,
        "playlist_tracks": 3,
        "audio_features": 0,
    }
    counts = await db.count_rows()
    assert counts["tracks"] == 2
    assert counts["playlist_tracks"] == 3

    memberships = await db.query("SELECT playlist_id, added_by FROM playlist_tracks WHERE track_id = 't1'")
    assert {(r["playlist_id"], r["added_by"]) for r in memberships} == {("p1", "user1"), ("p2", "user2")}
    assert (await db.get_track("t1"))["album_id"] == "al1"


@pytest.mark.asyncio()
async def test_ingest_with_audio_features(db: Database, tmp_path: Path):
    source = write_json(tmp_path / "playlists.json", _shared_track_document())
    feats = write_json(
        tmp_path / "features.json",
        {"audio_features": [features("t1"), features("t2"), features(None), features("t3"), features("t4")]},
    )

    stats = await PlaylistIngestor(db, retry_policy=_NO_WAIT).ingest(source, feats)

    assert stats.audio_features == 4
    assert (await db.count_rows())["audio_features"] == 4
    assert stats.finished_at is not None


@pytest.mark.asyncio()
async def test_single_playlist_document_and_small_batches(db: Database, tmp_path: Path):
    doc = playlist("p1", items=[item(track(f"t{i}", artists=[artist(f"ar{i}")])) for i in range(5)])
    source = write_json(tmp_path / "single.json", doc)

    stats = await PlaylistIngestor(db, batch_size=2, retry_policy=_NO_WAIT).ingest(source)

    assert stats.tracks == 5
    assert stats.artists == 5
    assert stats.playlist_tracks == 5


@pytest.mark.asyncio()
async def test_batch_size_argument_overrides_constructor(db: Database, tmp_path: Path, monkeypatch):
    sizes: list[int] = []
    original = UpsertExecutor.upsert_batch

    async def recording(self, records, kind):
        if kind is EntityKind.TRACK:
            sizes.append(len(records))
        return await original(self, records, kind)

    monkeypatch.setattr(UpsertExecutor, "upsert_batch", recording)
    doc = playlist("p1", items=[item(track(f"t{i}")) for i in range(5)])
    source = write_json(tmp_path / "single.json", doc)

    await PlaylistIngestor(db, batch_size=100, retry_policy=_NO_WAIT).ingest(source, batch_size=2)

    assert sizes == [2, 2, 1]


@pytest.mark.asyncio()
async def test_ingest_is_idempotent(db: Database, tmp_path: Path):
    source = write_json(tmp_path / "playlists.json", _shared_track_document())
    feats = write_json(tmp_path / "features.json", [features("t1"), features("t2")])
    ingestor = PlaylistIngestor(db, retry_policy=_NO_WAIT)

    first_stats = (await ingestor.ingest(source, feats)).as_dict()
    first = await _snapshot(db)
    second_stats = (await ingestor.ingest(source, feats)).as_dict()
    second = await _snapshot(db)

    assert first == second
    assert first_stats == second_stats


@pytest.mark.asyncio()
async def test_reingest_updates_changed_values(db: Database, tmp_path: Path):
    source = write_json(tmp_path / "v1.json", playlist("p1", name="Old", items=[item(track("t1", popularity=1))]))
    await PlaylistIngestor(db, retry_policy=_NO_WAIT).ingest(source)

    source = write_json(tmp_path / "v2.json", playlist("p1", name="New", items=[item(track("t1", popularity=99))]))
    await PlaylistIngestor(db, retry_policy=_NO_WAIT).ingest(source)

    assert (await db.get_playlist("p1"))["name"] == "New"
    assert (await db.get_track("t1"))["popularity"] == 99


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_missing_playlist_file(db: Database, tmp_path: Path):
    with pytest.raises(FatalIOError, match="Cannot load"):
        await PlaylistIngestor(db).ingest(tmp_path / "missing.json")


@pytest.mark.asyncio()
async def test_invalid_json(db: Database, tmp_path: Path):
    source = tmp_path / "broken.json"
    source.write_text("{not json", encoding="utf-8")

    with pytest.raises(FatalIOError):
        await PlaylistIngestor(db).ingest(source)


@pytest.mark.asyncio()
async def test_playlist_document_must_be_object(db: Database, tmp_path: Path):
    source = write_json(tmp_path / "list.json", [1, 2, 3])

    with pytest.raises(FatalIOError, match="expected a JSON object"):
        await PlaylistIngestor(db).ingest(source)


@pytest.mark.asyncio()
async def test_missing_features_file_fails_before_any_write(db: Database, tmp_path: Path):
    source = write_json(tmp_path / "playlists.json", _shared_track_document())

    with pytest.raises(FatalIOError):
        await PlaylistIngestor(db).ingest(source, tmp_path / "nope.json")

    assert set((await db.count_rows()).values()) == {0}


@pytest.mark.asyncio()
async def test_invalid_track_aborts_after_earlier_kinds(db: Database, tmp_path: Path):
    doc = playlist("p1", items=[item(track("t1", duration_ms=None, artists=[artist("ar1")]))])
    source = write_json(tmp_path / "bad.json", doc)
    ingestor = PlaylistIngestor(db, retry_policy=_NO_WAIT)

    with pytest.raises(ValidationError) as exc_info:
        await ingestor.ingest(source)

    assert exc_info.value.missing == ["duration_ms"]
    assert ingestor.stats.artists == 1
    assert ingestor.stats.tracks == 0
    assert ingestor.stats.finished_at is not None
    counts = await db.count_rows()
    assert counts["artists"] == 1
    assert counts["tracks"] == 0


@pytest.mark.asyncio()
async def test_transient_failure_is_retried(db: Database, tmp_path: Path, monkeypatch):
    original = UpsertExecutor.upsert_batch
    failures = {"left": 2}

    async def flaky(self, records, kind):
        if kind is EntityKind.TRACK and failures["left"]:
            failures["left"] -= 1
            raise TransientStoreError("database is locked")
        return await original(self, records, kind)

    monkeypatch.setattr(UpsertExecutor, "upsert_batch", flaky)
    source = write_json(tmp_path / "playlists.json", _shared_track_document())

    stats = await PlaylistIngestor(db, retry_policy=_NO_WAIT).ingest(source)

    assert failures["left"] == 0
    assert stats.tracks == 2


@pytest.mark.asyncio()
async def test_persistent_failure_keeps_partial_stats(db: Database, tmp_path: Path, monkeypatch):
    original = UpsertExecutor.upsert_batch
    calls = {"tracks": 0}

    async def broken_after_first(self, records, kind):
        if kind is EntityKind.TRACK:
            calls["tracks"] += 1
            if calls["tracks"] > 1:
                raise TransientStoreError("disk I/O error")
        return await original(self, records, kind)

    monkeypatch.setattr(UpsertExecutor, "upsert_batch", broken_after_first)
    source = write_json(tmp_path / "playlists.json", _shared_track_document())
    ingestor = PlaylistIngestor(db, batch_size=1, retry_policy=_NO_WAIT)

    with pytest.raises(BatchProcessingError) as exc_info:
        await ingestor.ingest(source)

    assert isinstance(exc_info.value.error, TransientStoreError)
    assert exc_info.value.batch_index == 1
    assert calls["tracks"] == 4
    assert ingestor.stats.tracks == 1
    assert ingestor.stats.playlists == 0
    assert (await db.count_rows())["tracks"] == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_load_json_file(tmp_path: Path):
    path = write_json(tmp_path / "data.json", {"a": 1})

    assert load_json_file(path) == {"a": 1}
    assert load_json_file(str(path)) == {"a": 1}


def test_stats_serialization():
    stats = IngestStats(artists=3)
    stats.add(EntityKind.TRACK, 5)
    stats.add(EntityKind.TRACK, 2)

    data = json.loads(stats.to_json())

    assert stats.count(EntityKind.TRACK) == 7
    assert data["artists"] == 3
    assert data["tracks"] == 7
    assert data["duration_seconds"] >= 0


@pytest.mark.asyncio()
async def test_malformed_document_is_fatal(db: Database, tmp_path: Path):
    source = write_json(tmp_path / "malformed.json", {"playlists": {"p1": playlist("p1")}})
    ingestor = PlaylistIngestor(db, retry_policy=_NO_WAIT)

    with pytest.raises(FatalIOError, match="playlists must be a JSON array"):
        await ingestor.ingest(source)

    assert ingestor.stats.finished_at is not None
    assert set((await db.count_rows()).values()) == {0}


@pytest.mark.asyncio()
async def test_repeated_playlist_keeps_first_copy(db: Database, tmp_path: Path):
    doc = {"playlists": [playlist("p1", name="Old", snapshot_id="s1"), playlist("p1", name="New", snapshot_id="s2")]}
    source = write_json(tmp_path / "repeated.json", doc)

    stats = await PlaylistIngestor(db, retry_policy=_NO_WAIT).ingest(source)

    assert stats.playlists == 1
    stored = await db.get_playlist("p1")
    assert stored["name"] == "Old"
    assert stored["snapshot"] == "s1"
