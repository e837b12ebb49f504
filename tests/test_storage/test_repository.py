"""Tests for SubjectRepository.

These test the SQL parameter handling and error mapping of the repository
using a mocked asyncpg database.
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import asyncpg
import pytest

from mirror_indexer.errors import StorageError
from mirror_indexer.ingestion.schemas import ChildItem, LocalRecord, SourceKind
from mirror_indexer.storage.database import Database
from mirror_indexer.storage.repository import SubjectRepository

ACTIVITY_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_db():
    """Mock Database with asyncpg-like interface."""
    db = AsyncMock(spec=Database)
    db.fetchval.return_value = 0
    db.fetchrow.return_value = None
    db.execute.return_value = "INSERT 0 1"
    return db


@pytest.fixture
def repo(mock_db):
    return SubjectRepository(mock_db)


def _row(**overrides):
    row = {
        "instance_id": "research",
        "subject_id": 42,
        "kind": "discourse",
        "title": "Danksharding",
        "slug": "danksharding",
        "state": "open",
        "item_count": 7,
        "last_activity_at": ACTIVITY_AT,
        "created_at": None,
        "extra": '{"views": 12}',
    }
    row.update(overrides)
    return row


class TestCreateTables:
    """Tests for create_tables."""

    @pytest.mark.asyncio
    async def test_executes_ddl(self, repo, mock_db):
        await repo.create_tables()

        sql = mock_db.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS subjects" in sql
        assert "CREATE TABLE IF NOT EXISTS subject_items" in sql


class TestGetRecord:
    """Tests for get_record."""

    @pytest.mark.asyncio
    async def test_missing_returns_none(self, repo, mock_db):
        assert await repo.get_record("research", 42) is None

        args = mock_db.fetchrow.call_args[0]
        assert args[1:] == ("research", 42)

    @pytest.mark.asyncio
    async def test_maps_row(self, repo, mock_db):
        mock_db.fetchrow.return_value = _row()

        record = await repo.get_record("research", 42)

        assert record.kind == SourceKind.DISCOURSE
        assert record.item_count == 7
        assert record.last_activity_at == ACTIVITY_AT
        assert record.extra == {"views": 12}

    @pytest.mark.asyncio
    async def test_decoded_jsonb(self, repo, mock_db):
        mock_db.fetchrow.return_value = _row(extra={"labels": ["ACD"]}, kind="github")

        record = await repo.get_record("research", 42)

        assert record.kind == SourceKind.GITHUB
        assert record.extra == {"labels": ["ACD"]}

    @pytest.mark.asyncio
    async def test_connection_failure_raises_storage_error(self, repo, mock_db):
        mock_db.fetchrow.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(StorageError, match="get_record failed"):
            await repo.get_record("research", 42)


class TestUpsertRecord:
    """Tests for upsert_record."""

    @pytest.mark.asyncio
    async def test_parameters(self, repo, mock_db):
        record = LocalRecord(
            instance_id="research",
            subject_id=42,
            kind=SourceKind.DISCOURSE,
            title="Danksharding",
            item_count=7,
            last_activity_at=ACTIVITY_AT,
            extra={"bumped_at": ACTIVITY_AT},
        )

        await repo.upsert_record(record)

        args = mock_db.execute.call_args[0]
        assert "ON CONFLICT (instance_id, subject_id) DO UPDATE" in args[0]
        assert args[1:4] == ("research", 42, "discourse")
        assert args[7] == 7
        assert args[8] == ACTIVITY_AT
        assert json.loads(args[10]) == {"bumped_at": str(ACTIVITY_AT)}

    @pytest.mark.asyncio
    async def test_postgres_error_raises_storage_error(self, repo, mock_db):
        mock_db.execute.side_effect = asyncpg.PostgresError("boom")
        record = LocalRecord(
            instance_id="research", subject_id=1, kind=SourceKind.DISCOURSE, title="t"
        )

        with pytest.raises(StorageError):
            await repo.upsert_record(record)


class TestChildren:
    """Tests for child item methods."""

    @pytest.mark.asyncio
    async def test_upsert_empty_is_noop(self, repo, mock_db):
        assert await repo.upsert_children([]) == 0
        mock_db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_upsert_bulk_arrays(self, repo, mock_db):
        children = [
            ChildItem(
                instance_id="research",
                subject_id=42,
                item_id=100 + n,
                position=n,
                author="vbuterin",
                body=f"post {n}",
                extra={"post_url": f"/t/42/{n}"},
            )
            for n in (1, 2, 3)
        ]

        count = await repo.upsert_children(children)

        assert count == 3
        args = mock_db.execute.call_args[0]
        assert "unnest" in args[0]
        assert args[3] == [101, 102, 103]
        assert args[4] == [1, 2, 3]
        assert json.loads(args[9][0]) == {"post_url": "/t/42/1"}

    @pytest.mark.asyncio
    async def test_count_children(self, repo, mock_db):
        mock_db.fetchval.return_value = 9

        assert await repo.count_children("research", 42) == 9
        assert mock_db.fetchval.call_args[0][1:] == ("research", 42)

    @pytest.mark.asyncio
    async def test_count_children_none_is_zero(self, repo, mock_db):
        mock_db.fetchval.return_value = None

        assert await repo.count_children("research", 42) == 0


class TestCountRecords:
    """Tests for count_records."""

    @pytest.mark.asyncio
    async def test_count(self, repo, mock_db):
        mock_db.fetchval.return_value = 1234

        assert await repo.count_records("magicians") == 1234

    @pytest.mark.asyncio
    async def test_interface_error_raises_storage_error(self, repo, mock_db):
        mock_db.fetchval.side_effect = asyncpg.InterfaceError("pool closed")

        with pytest.raises(StorageError, match="count_records failed"):
            await repo.count_records("magicians")
