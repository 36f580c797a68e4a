"""Extraction of unique entities from nested playlist exports.

The source document repeats artists, albums and tracks once per playlist item.
Each ``extract_*`` function walks it once for a single entity kind, keyed by
natural ID. The first occurrence of an ID is normalized and kept; later
occurrences are skipped without looking at their fields.

Playlist memberships are the exception: every item becomes a row, and the
store's ``(playlist_id, track_id)`` key decides what survives.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from typing import Any, TypeVar

import structlog

from playlistdb.errors import FatalIOError, ValidationError
from playlistdb.ingest.normalize import (
    normalize_album,
    normalize_artist,
    normalize_audio_features,
    normalize_playlist,
    normalize_playlist_track,
    normalize_track,
)
from playlistdb.storage.models import (
    Album,
    Artist,
    AudioFeatures,
    Playlist,
    PlaylistTrack,
    Track,
)

log = structlog.get_logger(__name__)

T = TypeVar("T")


def _listed(value: Any, where: str) -> list:
    """Return *value* as a list; absent means empty, any other shape is fatal."""
    if value is None:
        return []
    if not isinstance(value, list):
        msg = f"Malformed source document: {where} must be a JSON array, got {type(value).__name__}"
        raise FatalIOError(msg)
    return value


def iter_playlists(document: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    """Yield playlist objects from a ``{"playlists": [...]}`` or single-playlist document."""
    if "playlists" not in document or document["playlists"] is None:
        yield document
        return
    for playlist in _listed(document["playlists"], "playlists"):
        if isinstance(playlist, Mapping):
            yield playlist


def iter_items(playlist: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    tracks = playlist.get("tracks")
    if tracks is None:
        return
    if not isinstance(tracks, Mapping):
        msg = f"Malformed source document: playlist {playlist.get('id')!r} tracks must be an object"
        raise FatalIOError(msg)
    for item in _listed(tracks.get("items"), "tracks.items"):
        yield item if isinstance(item, Mapping) else {}


def _iter_tracks(document: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    for playlist in iter_playlists(document):
        for item in iter_items(playlist):
            track = item.get("track")
            if isinstance(track, Mapping):
                yield track


def _first_seen(
    sources: Iterator[Mapping[str, Any]],
    normalizer: Callable[[Mapping[str, Any]], T],
) -> dict[str, T]:
    seen: dict[str, T] = {}
    for raw in sources:
        key = raw.get("id")
        if key and key not in seen:
            seen[key] = normalizer(raw)
    return seen


def _artist_sources(document: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    for track in _iter_tracks(document):
        for artist in _listed(track.get("artists"), "track.artists"):
            if isinstance(artist, Mapping):
                yield artist
        album = track.get("album")
        if isinstance(album, Mapping):
            for artist in _listed(album.get("artists"), "album.artists"):
                if isinstance(artist, Mapping):
                    yield artist


def _album_sources(document: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    for track in _iter_tracks(document):
        album = track.get("album")
        if isinstance(album, Mapping):
            yield album


def extract_artists(document: Mapping[str, Any]) -> dict[str, Artist]:
    """Track artists, then album artists, per item in document order."""
    return _first_seen(_artist_sources(document), normalize_artist)


def extract_albums(document: Mapping[str, Any]) -> dict[str, Album]:
    return _first_seen(_album_sources(document), normalize_album)


def extract_tracks(document: Mapping[str, Any]) -> dict[str, Track]:
    return _first_seen(_iter_tracks(document), normalize_track)


def extract_playlists(document: Mapping[str, Any]) -> dict[str, Playlist]:
    """Playlists keyed by ID; a repeated ID keeps its first name and snapshot.

    Exports that repeat a playlist used to be written once per occurrence, so
    the last copy won. Here the first copy wins, like every other kind, and
    the repeat is not counted.
    """
    return _first_seen(iter_playlists(document), normalize_playlist)


def extract_playlist_tracks(document: Mapping[str, Any]) -> list[PlaylistTrack]:
    """One row per item that references a track, positioned by item index."""
    rows: list[PlaylistTrack] = []
    for playlist in iter_playlists(document):
        playlist_id = playlist.get("id")
        if not playlist_id:
            continue
        for position, item in enumerate(iter_items(playlist)):
            track = item.get("track")
            if isinstance(track, Mapping) and track.get("id"):
                rows.append(normalize_playlist_track(playlist_id, item, position))
    return rows


def extract_audio_features(document: Mapping[str, Any] | list) -> list[AudioFeatures]:
    """Normalize every feature record; invalid ones are logged and skipped."""
    if isinstance(document, Mapping):
        records = _listed(document.get("audio_features"), "audio_features")
    else:
        records = _listed(document, "audio features document")

    features: list[AudioFeatures] = []
    for raw in records:
        if raw is None:
            continue
        if not isinstance(raw, Mapping):
            log.warning("audio_features_skipped", error="record is not an object")
            continue
        try:
            features.append(normalize_audio_features(raw))
        except ValidationError as exc:
            log.warning("audio_features_skipped", track_id=raw.get("id"), error=str(exc))
    return features
