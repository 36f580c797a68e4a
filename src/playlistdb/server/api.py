"""Read-only HTTP query API over the ingested playlist data."""

from __future__ import annotations

import math
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

if TYPE_CHECKING:
    from playlistdb.storage.database import Database

log = structlog.get_logger(__name__)

SERVICE_NAME = "playlistdb-api"
_TOP_TRACKS_LIMIT = 5
_AVERAGED_FEATURES = ("danceability", "energy", "valence", "tempo")


# ---------------------------------------------------------------------------
# Row → payload helpers
# ---------------------------------------------------------------------------


def _album_payload(row: dict) -> dict | None:
    if row["album_id"] is None:
        return None
    return {
        "id": row["album_id"],
        "name": row["album_name"],
        "release_date": row["release_date"],
        "album_type": row["album_type"],
    }


def _features_payload(row: dict) -> dict:
    return {
        "danceability": row["danceability"],
        "energy": row["energy"],
        "valence": row["valence"],
        "tempo": row["tempo"],
        "key": row["key_signature"],
        "mode": row["mode"],
    }


def _track_payload(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "duration_ms": row["duration_ms"],
        "explicit": bool(row["explicit"]),
        "popularity": row["popularity"],
        "album": _album_payload(row),
    }


def _average_features(rows: list[dict]) -> dict:
    with_features = [r for r in rows if r["features_track_id"] is not None]
    averages: dict[str, float | None] = {}
    for name in _AVERAGED_FEATURES:
        values = [r[name] for r in with_features if r[name] is not None]
        averages[name] = sum(values) / len(values) if values else None
    return averages


def _error(status_code: int, message: str, **extra: object) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_api_app(db: Database, *, manage_db: bool = False) -> FastAPI:
    """Build the query API.

    With ``manage_db`` the store is connected on startup and closed on
    shutdown; otherwise the caller owns its lifecycle.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ARG001, ANN001
        if manage_db:
            await db.connect()
        try:
            yield
        finally:
            if manage_db:
                await db.close()

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    router = APIRouter(prefix="/api/v1")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # noqa: ANN001, ANN202
        log.info("api_request", method=request.method, path=request.url.path, query=str(request.query_params))
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return _error(404, "Endpoint not found", path=request.url.path)
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error("api_unhandled_error", path=request.url.path, error=str(exc))
        return _error(500, "Internal server error")

    # -- endpoints ------------------------------------------------------------

    @router.get("/health")
    async def health() -> dict:
        return {
            "status": "OK",
            "timestamp": datetime.now(UTC).isoformat(),
            "service": SERVICE_NAME,
        }

    @router.get("/playlists/{playlist_id}/tracks")
    async def playlist_tracks(
        playlist_id: str,
        energy_min: str = Query(default="0", alias="energyMin"),
    ):  # noqa: ANN201
        try:
            threshold = float(energy_min)
        except ValueError:
            threshold = math.nan
        if math.isnan(threshold) or not 0 <= threshold <= 1:
            return _error(400, "energyMin must be a number between 0 and 1")

        playlist = await db.get_playlist(playlist_id)
        if playlist is None:
            return _error(404, "Playlist not found")

        rows = await db.list_playlist_tracks(playlist_id, threshold)
        log.info("playlist_tracks_found", playlist_id=playlist_id, energy_min=threshold, count=len(rows))

        tracks = [
            {
                **_track_payload(row),
                "audio_features": _features_payload(row),
                "position": row["position"],
                "added_at": row["added_at"],
                "added_by": row["added_by"],
            }
            for row in rows
        ]
        return {
            "playlist": {
                "id": playlist["id"],
                "name": playlist["name"],
                "owner": playlist["owner"],
                "snapshot": playlist["snapshot"],
            },
            "filters": {"energyMin": threshold},
            "tracks": tracks,
            "total": len(tracks),
        }

    @router.get("/artists/{artist_id}/summary")
    async def artist_summary(artist_id: str):  # noqa: ANN201
        artist = await db.get_artist(artist_id)
        if artist is None:
            return _error(404, "Artist not found")

        rows = await db.list_top_tracks(_TOP_TRACKS_LIMIT)
        top_tracks = [
            {
                **_track_payload(row),
                "audio_features": _features_payload(row) if row["features_track_id"] is not None else None,
            }
            for row in rows
        ]
        log.info("artist_summary_built", artist_id=artist_id, top_tracks=len(top_tracks))
        return {
            "artist": {
                "id": artist["id"],
                "name": artist["name"],
                "popularity": artist["popularity"],
                "followers": artist["followers"],
            },
            "top_tracks": top_tracks,
            "average_audio_features": _average_features(rows),
            "stats": {
                "total_top_tracks": len(top_tracks),
                "tracks_with_features": sum(1 for r in rows if r["features_track_id"] is not None),
            },
        }

    app.include_router(router)
    return app
