"""Tests for the indexer registry."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from mirror_indexer.errors import UnknownInstance
from mirror_indexer.indexer.config import IndexerConfig
from mirror_indexer.indexer.registry import IndexerRegistry, create_source
from mirror_indexer.indexer.worker import SourceWorker
from mirror_indexer.ingestion.discourse_source import DiscourseSource
from mirror_indexer.ingestion.github_source import GitHubSource
from mirror_indexer.ingestion.http_client import HTTPClient
from mirror_indexer.ingestion.schemas import ListingPage, SourceInstance, SourceKind
from tests.conftest import ScriptedSource, make_page, make_summary


@pytest.fixture
def registry(discourse_instance, github_instance, storage, indexer_config):
    workers = [
        SourceWorker(ScriptedSource(discourse_instance), storage, config=indexer_config),
        SourceWorker(ScriptedSource(github_instance), storage, config=indexer_config),
    ]
    return IndexerRegistry(workers, config=indexer_config)


class TestLookup:
    """Tests for instance lookup and enqueue."""

    def test_instance_ids(self, registry):
        assert registry.instance_ids == ["research", "pm"]

    def test_get_unknown_instance(self, registry):
        with pytest.raises(UnknownInstance) as exc_info:
            registry.get("nope")

        assert exc_info.value.instance_id == "nope"
        assert "nope" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_enqueue_unknown_instance(self, registry):
        with pytest.raises(UnknownInstance):
            await registry.enqueue("nope", 1)

    @pytest.mark.asyncio
    async def test_enqueue_routes_to_worker(self, registry):
        assert await registry.enqueue("pm", 1500) is True
        assert await registry.enqueue("pm", 1500) is False
        assert await registry.enqueue("research", 1500) is True

        assert registry.get("pm").queue.pending == 1
        assert registry.get("research").queue.pending == 1

    @pytest.mark.asyncio
    async def test_enqueue_page(self, registry):
        await registry.enqueue("research", 42, page=3)

        request = await registry.get("research").queue.dequeue()

        assert (request.subject_id, request.page) == (42, 3)

    def test_duplicate_instance_rejected(self, discourse_instance, storage):
        workers = [
            SourceWorker(ScriptedSource(discourse_instance), storage),
            SourceWorker(ScriptedSource(discourse_instance), storage),
        ]
        with pytest.raises(ValueError):
            IndexerRegistry(workers)


class TestFromSettings:
    """Tests for building workers from configuration."""

    def test_builds_one_worker_per_instance(self, test_settings, storage):
        registry = IndexerRegistry.from_settings(
            test_settings,
            MagicMock(spec=HTTPClient),
            storage,
        )

        assert registry.instance_ids == ["magicians", "research", "pm"]
        assert isinstance(registry.get("research").source, DiscourseSource)
        assert isinstance(registry.get("pm").source, GitHubSource)

    def test_default_forums_use_separate_indexes(self, test_settings, storage):
        registry = IndexerRegistry.from_settings(
            test_settings,
            MagicMock(spec=HTTPClient),
            storage,
        )

        assert registry.get("magicians").source.search_index == "magicians"
        assert registry.get("research").source.search_index == "research"
        assert registry.get("pm").source.search_index == "github"

    def test_search_index_per_kind_and_override(self, test_settings):
        http_client = MagicMock(spec=HTTPClient)
        forum = SourceInstance(
            instance_id="research",
            kind=SourceKind.DISCOURSE,
            base_url="https://ethresear.ch",
            poll_interval=timedelta(minutes=30),
        )
        custom = SourceInstance(
            instance_id="magicians",
            kind=SourceKind.DISCOURSE,
            base_url="https://ethereum-magicians.org",
            poll_interval=timedelta(minutes=30),
            search_index="magicians",
        )

        assert create_source(forum, http_client, test_settings).search_index == "forum"
        assert create_source(custom, http_client, test_settings).search_index == "magicians"

    def test_github_tokens_rotate(self, test_settings, github_instance):
        settings = test_settings.model_copy(update={"github_tokens": "ghp_a,ghp_b"})

        source = create_source(github_instance, MagicMock(spec=HTTPClient), settings)

        assert source._token_rotator is not None
        assert source._token_rotator.key_count == 2


class TestLifecycle:
    """Tests for starting and stopping tasks."""

    @pytest.mark.asyncio
    async def test_start_and_stop_all(self, registry):
        await registry.start_all()

        names = sorted(task.get_name() for task in registry.tasks)
        assert names == [
            "backfill_pm",
            "backfill_research",
            "scheduler_pm",
            "scheduler_research",
            "worker_pm",
            "worker_research",
        ]

        tasks = registry.tasks
        await registry.stop_all()

        assert all(task.done() for task in tasks)
        assert registry.tasks == []

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, registry):
        await registry.start_all()
        await registry.start_all()

        assert len(registry.tasks) == 6
        await registry.stop_all()

    @pytest.mark.asyncio
    async def test_enqueued_work_is_processed(self, discourse_instance, storage, indexer_config):
        source = ScriptedSource(
            discourse_instance,
            pages={(42, 1): make_page(page=1, item_count=1, children=1)},
        )
        registry = IndexerRegistry(
            [SourceWorker(source, storage, config=indexer_config)],
            config=indexer_config,
        )
        await registry.start_all()
        try:
            await registry.enqueue("research", 42)
            for _ in range(100):
                if ("research", 42) in storage.records:
                    break
                await asyncio.sleep(0.01)
        finally:
            await registry.stop_all()

        assert ("research", 42) in storage.records

    @pytest.mark.asyncio
    async def test_one_failing_instance_does_not_stop_others(
        self, discourse_instance, github_instance, storage, indexer_config
    ):
        broken = SourceWorker(ScriptedSource(github_instance), storage, config=indexer_config)
        broken.backfill_if_empty = AsyncMock(side_effect=RuntimeError("boom"))
        healthy_source = ScriptedSource(
            discourse_instance,
            pages={(42, 1): make_page(page=1, item_count=0, children=0)},
        )
        healthy = SourceWorker(healthy_source, storage, config=indexer_config)
        registry = IndexerRegistry([broken, healthy], config=indexer_config)

        await registry.start_all()
        try:
            await registry.enqueue("research", 42)
            for _ in range(100):
                if ("research", 42) in storage.records:
                    break
                await asyncio.sleep(0.01)
            assert healthy.is_running()
        finally:
            await registry.stop_all()

        assert ("research", 42) in storage.records


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_walks_and_drains_each_instance(self, discourse_instance, storage, indexer_config):
        source = ScriptedSource(
            discourse_instance,
            listings={None: ListingPage(subjects=[make_summary(42, item_count=1)])},
            pages={(42, 1): make_page(page=1, item_count=1, children=1)},
        )
        registry = IndexerRegistry(
            [SourceWorker(source, storage, config=indexer_config)],
            config=indexer_config,
        )

        summary = await registry.run_once()

        assert summary["research"]["pages"] == 1
        assert summary["research"]["queued"] == 1
        assert summary["research"]["outcomes"] == {"stored": 1, "skipped": 1}
        assert registry.tasks == []


class TestHealth:
    def test_status(self, registry):
        status = registry.status()

        assert set(status) == {"research", "pm"}
        assert status["pm"]["kind"] == "github"

    @pytest.mark.asyncio
    async def test_health_check(self, registry):
        for instance_id in registry.instance_ids:
            registry.get(instance_id).source.health_check = AsyncMock(return_value=True)

        health = await registry.health_check()

        assert health["research"]["source_healthy"] is True
        assert health["pm"]["source_healthy"] is True
