"""Normalization of raw export records into typed, schema-shaped records.

Every per-kind normalizer goes through :func:`normalize`, which trims strings,
checks required fields (reporting all of them at once) and drops ``None``
values so that optional columns are left "not specified" in the store.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from playlistdb.errors import ValidationError
from playlistdb.storage.models import (
    Album,
    Artist,
    AudioFeatures,
    Playlist,
    PlaylistTrack,
    Track,
)

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_FALLBACK_FORMATS = (
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def normalize(raw: Mapping[str, Any], required_fields: Sequence[str]) -> dict[str, Any]:
    """Return a sanitized copy of *raw*.

    Raises :class:`ValidationError` listing every entry of *required_fields*
    that is absent, ``None`` or an empty string after trimming.
    """
    cleaned = {key: value.strip() if isinstance(value, str) else value for key, value in raw.items()}
    missing = [field for field in required_fields if cleaned.get(field) is None or cleaned.get(field) == ""]
    if missing:
        raise ValidationError(missing)
    return {key: value for key, value in cleaned.items() if value is not None}


def _nested(raw: Mapping[str, Any], key: str, field: str) -> Any:
    inner = raw.get(key)
    if isinstance(inner, Mapping):
        return inner.get(field)
    return None


def _build(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    try:
        return model(**data)
    except PydanticValidationError as exc:
        fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
        msg = f"Validation failed: invalid {model.__name__} value for {', '.join(fields)}"
        raise ValidationError(fields, msg) from exc


def normalize_artist(artist: Mapping[str, Any]) -> Artist:
    data = normalize(
        {
            "id": artist.get("id"),
            "name": artist.get("name"),
            "popularity": artist.get("popularity") or 0,
            "followers": _nested(artist, "followers", "total") or 0,
        },
        ["id", "name"],
    )
    return _build(Artist, data)


def normalize_album(album: Mapping[str, Any]) -> Album:
    data = normalize(
        {
            "id": album.get("id"),
            "name": album.get("name"),
            "release_date": album.get("release_date"),
            "album_type": album.get("album_type") or "album",
        },
        ["id", "name"],
    )
    return _build(Album, data)


def normalize_track(track: Mapping[str, Any]) -> Track:
    data = normalize(
        {
            "id": track.get("id"),
            "name": track.get("name"),
            "duration_ms": track.get("duration_ms"),
            "explicit": track.get("explicit") or False,
            "popularity": track.get("popularity") or 0,
            "album_id": _nested(track, "album", "id"),
        },
        ["id", "name", "duration_ms"],
    )
    return _build(Track, data)


def normalize_playlist(playlist: Mapping[str, Any]) -> Playlist:
    data = normalize(
        {
            "id": playlist.get("id"),
            "name": playlist.get("name"),
            "owner": _nested(playlist, "owner", "id"),
            "snapshot": playlist.get("snapshot_id"),
        },
        ["id", "name"],
    )
    return _build(Playlist, data)


def normalize_playlist_track(
    playlist_id: str,
    item: Mapping[str, Any],
    position: int,
) -> PlaylistTrack:
    data = normalize(
        {
            "playlist_id": playlist_id,
            "track_id": _nested(item, "track", "id"),
            "position": position,
            "added_at": normalize_timestamp(item.get("added_at")),
            "added_by": _nested(item, "added_by", "id") or None,
        },
        ["playlist_id", "track_id"],
    )
    return _build(PlaylistTrack, data)


def normalize_audio_features(features: Mapping[str, Any]) -> AudioFeatures:
    data = normalize(
        {
            "track_id": features.get("id"),
            "danceability": features.get("danceability"),
            "energy": features.get("energy"),
            "tempo": features.get("tempo"),
            "key_signature": features.get("key"),
            "mode": features.get("mode"),
            "valence": features.get("valence"),
        },
        ["track_id"],
    )
    return _build(AudioFeatures, data)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        # Numbers are epoch milliseconds.
        try:
            return datetime.fromtimestamp(value / 1000, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        parsed = _parse_timestamp_string(value.strip())
        if parsed is None:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _parse_timestamp_string(text: str) -> datetime | None:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    # RFC 2822, as in HTTP and mail headers: "Mon, 15 Jan 2024 10:30:00 GMT".
    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        pass
    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def normalize_timestamp(
    value: Any = None,
    *,
    now: Callable[[], datetime] | None = None,
) -> str:
    """Format *value* as ``YYYY-MM-DD HH:MM:SS`` in UTC.

    Accepts datetimes, epoch milliseconds, ISO-8601 strings, RFC 2822 strings
    and slash-separated dates (``2024/01/15 10:30:00``). Strings without a
    zone are read as UTC. Absent or unparsable input falls back to the
    current time.
    """
    parsed = _parse_timestamp(value)
    if parsed is None:
        parsed = now() if now is not None else datetime.now(UTC)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).strftime(_TIMESTAMP_FORMAT)
