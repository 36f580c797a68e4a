"""Pydantic models and table declarations for the playlistdb storage layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class EntityKind(StrEnum):
    """The entity kinds written by ingestion, in dependency order."""

    ARTIST = "artists"
    ALBUM = "albums"
    TRACK = "tracks"
    PLAYLIST = "playlists"
    PLAYLIST_TRACK = "playlist_tracks"
    AUDIO_FEATURES = "audio_features"


class _Record(BaseModel):
    # Normalized records are never mutated once handed to the store.
    model_config = ConfigDict(frozen=True)


class Artist(_Record):
    id: str
    name: str
    popularity: int = 0
    followers: int = 0


class Album(_Record):
    id: str
    name: str
    release_date: str | None = None
    album_type: str = "album"


class Track(_Record):
    id: str
    name: str
    duration_ms: int
    explicit: bool = False
    popularity: int = 0
    album_id: str | None = None


class Playlist(_Record):
    id: str
    name: str
    owner: str | None = None
    snapshot: str | None = None


class PlaylistTrack(_Record):
    """Membership of a track in a playlist. Keyed by (playlist_id, track_id)."""

    playlist_id: str
    track_id: str
    position: int
    added_at: str
    added_by: str | None = None


class AudioFeatures(_Record):
    track_id: str
    danceability: float | None = None
    energy: float | None = None
    valence: float | None = None
    tempo: float | None = None
    key_signature: int | None = None
    mode: int | None = None


Record = Artist | Album | Track | Playlist | PlaylistTrack | AudioFeatures


@dataclass(frozen=True)
class EntityTable:
    """Static upsert declaration for one entity kind.

    ``columns`` lists every written column in statement order. Columns in
    ``keep_on_absent`` are "not specified" when the record holds ``None``:
    an update keeps whatever the row already has. All other non-key columns
    are overwritten on conflict.
    """

    name: str
    model: type[BaseModel]
    columns: tuple[str, ...]
    conflict_keys: tuple[str, ...]
    keep_on_absent: tuple[str, ...] = ()

    @property
    def update_columns(self) -> tuple[str, ...]:
        return tuple(c for c in self.columns if c not in self.conflict_keys)

    def params(self, record: BaseModel) -> tuple:
        if not isinstance(record, self.model):
            msg = f"{self.name} expects {self.model.__name__} records, got {type(record).__name__}"
            raise TypeError(msg)
        return tuple(getattr(record, c) for c in self.columns)


TABLES: dict[EntityKind, EntityTable] = {
    EntityKind.ARTIST: EntityTable(
        name="artists",
        model=Artist,
        columns=("id", "name", "popularity", "followers"),
        conflict_keys=("id",),
    ),
    EntityKind.ALBUM: EntityTable(
        name="albums",
        model=Album,
        columns=("id", "name", "release_date", "album_type"),
        conflict_keys=("id",),
        keep_on_absent=("release_date",),
    ),
    EntityKind.TRACK: EntityTable(
        name="tracks",
        model=Track,
        # album_id is overwritten even when absent: no album linkage in the
        # source means the track has none.
        columns=("id", "name", "duration_ms", "explicit", "popularity", "album_id"),
        conflict_keys=("id",),
    ),
    EntityKind.PLAYLIST: EntityTable(
        name="playlists",
        model=Playlist,
        columns=("id", "name", "owner", "snapshot"),
        conflict_keys=("id",),
        keep_on_absent=("owner", "snapshot"),
    ),
    EntityKind.PLAYLIST_TRACK: EntityTable(
        name="playlist_tracks",
        model=PlaylistTrack,
        columns=("playlist_id", "track_id", "position", "added_at", "added_by"),
        conflict_keys=("playlist_id", "track_id"),
        keep_on_absent=("added_by",),
    ),
    EntityKind.AUDIO_FEATURES: EntityTable(
        name="audio_features",
        model=AudioFeatures,
        columns=("track_id", "danceability", "energy", "valence", "tempo", "key_signature", "mode"),
        conflict_keys=("track_id",),
        keep_on_absent=("danceability", "energy", "valence", "tempo", "key_signature", "mode"),
    ),
}
