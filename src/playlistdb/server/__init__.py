"""HTTP query API for playlistdb."""

from playlistdb.server.api import create_api_app

__all__ = ["create_api_app"]
