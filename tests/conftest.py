"""Shared fixtures for playlistdb tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import pytest_asyncio
import structlog

from playlistdb.storage.database import Database


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all playlistdb runtime files to a temporary directory.

    Patches ``playlistdb.config.get_base_dir`` (and the re-imported reference
    in ``playlistdb.cli``) so that nothing touches the real ``~/.playlistdb/``.
    """
    fake_base = tmp_path / ".playlistdb"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("playlistdb.config.get_base_dir", lambda: fake_base)
    monkeypatch.setattr("playlistdb.cli.get_base_dir", lambda: fake_base)

    return fake_base


@pytest_asyncio.fixture()
async def db(tmp_path: Path):
    """Provide a fresh connected database for each test."""
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop handlers installed by CLI runs so they don't leak between tests."""
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()
