"""playlistdb storage layer: async SQLite store, entity models and batch upserts."""

from playlistdb.storage.database import Database
from playlistdb.storage.models import (
    TABLES,
    Album,
    Artist,
    AudioFeatures,
    EntityKind,
    Playlist,
    PlaylistTrack,
    Track,
)
from playlistdb.storage.upsert import UpsertExecutor

__all__ = [
    "TABLES",
    "Album",
    "Artist",
    "AudioFeatures",
    "Database",
    "EntityKind",
    "Playlist",
    "PlaylistTrack",
    "Track",
    "UpsertExecutor",
]
