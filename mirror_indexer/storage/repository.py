"""
Database repository for mirrored subjects and their items.

Two tables, both keyed by source instance:
- subjects:      one row per forum topic / tracker issue
- subject_items: one row per post / comment

All writes are INSERT ... ON CONFLICT DO UPDATE, so replaying a page is
harmless.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import asyncpg

from mirror_indexer.errors import StorageError
from mirror_indexer.ingestion.schemas import ChildItem, LocalRecord, SourceKind
from mirror_indexer.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS subjects (
    instance_id      TEXT NOT NULL,
    subject_id       BIGINT NOT NULL,
    kind             TEXT NOT NULL,
    title            TEXT NOT NULL DEFAULT '',
    slug             TEXT,
    state            TEXT,
    item_count       INTEGER NOT NULL DEFAULT 0,
    last_activity_at TIMESTAMPTZ,
    created_at       TIMESTAMPTZ,
    extra            JSONB NOT NULL DEFAULT '{}',
    indexed_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (instance_id, subject_id)
);

CREATE INDEX IF NOT EXISTS idx_subjects_last_activity
    ON subjects(instance_id, last_activity_at DESC);

CREATE TABLE IF NOT EXISTS subject_items (
    instance_id TEXT NOT NULL,
    subject_id  BIGINT NOT NULL,
    item_id     BIGINT NOT NULL,
    position    INTEGER NOT NULL,
    author      TEXT,
    body        TEXT,
    created_at  TIMESTAMPTZ,
    updated_at  TIMESTAMPTZ,
    extra       JSONB NOT NULL DEFAULT '{}',
    indexed_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (instance_id, subject_id, item_id)
);

CREATE INDEX IF NOT EXISTS idx_subject_items_position
    ON subject_items(instance_id, subject_id, position);
"""

_UPSERT_RECORD_SQL = """
INSERT INTO subjects (
    instance_id, subject_id, kind, title, slug, state,
    item_count, last_activity_at, created_at, extra
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
ON CONFLICT (instance_id, subject_id) DO UPDATE SET
    kind = EXCLUDED.kind,
    title = EXCLUDED.title,
    slug = EXCLUDED.slug,
    state = EXCLUDED.state,
    item_count = EXCLUDED.item_count,
    last_activity_at = EXCLUDED.last_activity_at,
    created_at = EXCLUDED.created_at,
    extra = EXCLUDED.extra,
    indexed_at = NOW()
"""

_BULK_UPSERT_ITEMS_SQL = """
INSERT INTO subject_items (
    instance_id, subject_id, item_id, position, author, body,
    created_at, updated_at, extra
)
SELECT * FROM unnest(
    $1::text[], $2::bigint[], $3::bigint[], $4::integer[], $5::text[], $6::text[],
    $7::timestamptz[], $8::timestamptz[], $9::jsonb[]
)
ON CONFLICT (instance_id, subject_id, item_id) DO UPDATE SET
    position = EXCLUDED.position,
    author = EXCLUDED.author,
    body = EXCLUDED.body,
    created_at = EXCLUDED.created_at,
    updated_at = EXCLUDED.updated_at,
    extra = EXCLUDED.extra,
    indexed_at = NOW()
"""


def _decode_json(value: Any) -> dict[str, Any]:
    if not value:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _record_to_local(record) -> LocalRecord:
    """Convert an asyncpg Record to a LocalRecord."""
    return LocalRecord(
        instance_id=record["instance_id"],
        subject_id=record["subject_id"],
        kind=SourceKind(record["kind"]),
        title=record["title"],
        slug=record["slug"],
        state=record["state"],
        item_count=record["item_count"],
        last_activity_at=record["last_activity_at"],
        created_at=record["created_at"],
        extra=_decode_json(record["extra"]),
    )


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Re-raise driver and connection failures as StorageError."""
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        raise StorageError(f"{operation} failed: {e}") from e


class SubjectRepository:
    """
    Storage boundary used by the source workers.

    Usage:
        repo = SubjectRepository(database)
        await repo.create_tables()
        record = await repo.get_record("research", 42)
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the subjects and subject_items tables (idempotent)."""
        with _storage_errors("create_tables"):
            await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Subject tables ensured")

    async def get_record(self, instance_id: str, subject_id: int) -> LocalRecord | None:
        with _storage_errors("get_record"):
            row = await self._db.fetchrow(
                "SELECT * FROM subjects WHERE instance_id = $1 AND subject_id = $2",
                instance_id, subject_id,
            )
        return _record_to_local(row) if row else None

    async def upsert_record(self, record: LocalRecord) -> None:
        """Insert or update a single subject row."""
        with _storage_errors("upsert_record"):
            await self._db.execute(
                _UPSERT_RECORD_SQL,
                record.instance_id,
                record.subject_id,
                record.kind.value,
                record.title,
                record.slug,
                record.state,
                record.item_count,
                record.last_activity_at,
                record.created_at,
                json.dumps(record.extra, default=str),
            )

    async def count_children(self, instance_id: str, subject_id: int) -> int:
        with _storage_errors("count_children"):
            count = await self._db.fetchval(
                "SELECT COUNT(*) FROM subject_items WHERE instance_id = $1 AND subject_id = $2",
                instance_id, subject_id,
            )
        return count or 0

    async def upsert_children(self, children: list[ChildItem]) -> int:
        """Insert or update items in one statement.

        Returns the number of items processed.
        """
        if not children:
            return 0

        with _storage_errors("upsert_children"):
            await self._db.execute(
                _BULK_UPSERT_ITEMS_SQL,
                [c.instance_id for c in children],
                [c.subject_id for c in children],
                [c.item_id for c in children],
                [c.position for c in children],
                [c.author for c in children],
                [c.body for c in children],
                [c.created_at for c in children],
                [c.updated_at for c in children],
                [json.dumps(c.extra, default=str) for c in children],
            )
        logger.debug("Upserted %d items", len(children))
        return len(children)

    async def count_records(self, instance_id: str) -> int:
        """Count stored subjects for an instance."""
        with _storage_errors("count_records"):
            count = await self._db.fetchval(
                "SELECT COUNT(*) FROM subjects WHERE instance_id = $1",
                instance_id,
            )
        return count or 0
