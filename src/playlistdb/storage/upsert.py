"""Batch upserts: one transaction per batch, all-or-nothing."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from playlistdb.storage.database import build_upsert
from playlistdb.storage.models import TABLES, EntityKind, Record

if TYPE_CHECKING:
    from playlistdb.storage.database import Database

log = structlog.get_logger(__name__)


class UpsertExecutor:
    """Writes batches of normalized records into the store."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def upsert_batch(self, records: Sequence[Record], kind: EntityKind) -> int:
        """Upsert *records* of *kind* in a single transaction.

        Any failing record rolls the whole batch back and the error
        propagates. Returns the number of records written.
        """
        if not records:
            return 0

        table = TABLES[kind]
        sql = build_upsert(table)
        async with self._db.transaction() as conn:
            for record in records:
                await conn.execute(sql, table.params(record))

        log.debug("batch_upserted", kind=kind.value, count=len(records))
        return len(records)
