"""
Indexer registry - one source worker per configured instance.

Owns the asyncio tasks of every instance: the consumer loop, the
scheduler and the one-shot startup backfill. Tasks of different
instances are independent; a failure in one never stops the others.
"""

import asyncio
from typing import Any

import structlog

from mirror_indexer.config.instances import load_instances
from mirror_indexer.config.settings import Settings
from mirror_indexer.errors import UnknownInstance
from mirror_indexer.indexer.config import IndexerConfig
from mirror_indexer.indexer.scheduler import Scheduler
from mirror_indexer.indexer.worker import SourceWorker
from mirror_indexer.ingestion.base_source import PaginatedSource
from mirror_indexer.ingestion.discourse_source import DiscourseSource
from mirror_indexer.ingestion.github_source import GitHubSource
from mirror_indexer.ingestion.http_client import APIKeyRotator, HTTPClient
from mirror_indexer.ingestion.schemas import SourceInstance, SourceKind
from mirror_indexer.search.meili import MeilisearchClient
from mirror_indexer.storage.repository import SubjectRepository

logger = structlog.get_logger(__name__)


def create_source(
    instance: SourceInstance,
    http_client: HTTPClient,
    settings: Settings,
) -> PaginatedSource:
    """Build the adapter for an instance, resolving its search index and credentials."""
    if instance.kind == SourceKind.DISCOURSE:
        return DiscourseSource(
            instance,
            http_client,
            search_index=instance.search_index or settings.meili_index_forum,
            rate_limit=settings.discourse_rate_limit,
        )

    if instance.kind == SourceKind.GITHUB:
        return GitHubSource(
            instance,
            http_client,
            search_index=instance.search_index or settings.meili_index_github,
            rate_limit=settings.github_rate_limit,
            token_rotator=APIKeyRotator.from_env_var(settings.github_tokens),
        )

    raise ValueError(f"Unsupported source kind: {instance.kind}")


class IndexerRegistry:
    """
    Maps instance ids to their workers and runs them.

    Usage:
        registry = IndexerRegistry.from_settings(settings, http_client, storage)
        await registry.start_all()
        await registry.enqueue("research", subject_id=42)
        await registry.stop_all()
    """

    def __init__(
        self,
        workers: list[SourceWorker],
        config: IndexerConfig | None = None,
    ):
        self._config = config or IndexerConfig()
        self._workers: dict[str, SourceWorker] = {}
        for worker in workers:
            if worker.instance_id in self._workers:
                raise ValueError(f"Duplicate instance_id: {worker.instance_id}")
            self._workers[worker.instance_id] = worker

        self._schedulers: dict[str, Scheduler] = {}
        self._tasks: list[asyncio.Task] = []

        logger.info("Indexer registry initialized", instances=self.instance_ids)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: HTTPClient,
        storage: SubjectRepository,
        search: MeilisearchClient | None = None,
        config: IndexerConfig | None = None,
        instances: list[SourceInstance] | None = None,
    ) -> "IndexerRegistry":
        """
        Build one worker per configured instance.

        Args:
            settings: Application settings (instances, rate limits, indexes)
            http_client: Shared HTTP client used by every adapter
            storage: Shared subject repository
            search: Search client, or None when search is not configured
            config: Indexer configuration shared by all workers
            instances: Explicit instances (parsed from settings if None)
        """
        config = config or IndexerConfig()
        if instances is None:
            instances = load_instances(settings.source_instances)

        workers = [
            SourceWorker(
                create_source(instance, http_client, settings),
                storage,
                search=search,
                config=config,
            )
            for instance in instances
        ]
        return cls(workers, config=config)

    @property
    def instance_ids(self) -> list[str]:
        return list(self._workers)

    @property
    def tasks(self) -> list[asyncio.Task]:
        return list(self._tasks)

    def get(self, instance_id: str) -> SourceWorker:
        """
        Look up the worker of an instance.

        Raises:
            UnknownInstance: If the instance is not configured
        """
        try:
            return self._workers[instance_id]
        except KeyError:
            raise UnknownInstance(instance_id) from None

    async def enqueue(self, instance_id: str, subject_id: int, page: int = 1) -> bool:
        """
        Request indexing of a subject page on an instance.

        Returns:
            True if queued, False if coalesced with an outstanding request

        Raises:
            UnknownInstance: If the instance is not configured
        """
        return await self.get(instance_id).enqueue(subject_id, page)

    async def start_all(self) -> None:
        """Spawn the consumer, scheduler and backfill tasks of every worker."""
        if self._tasks:
            logger.warning("Indexer registry already started")
            return

        for instance_id, worker in self._workers.items():
            scheduler = Scheduler(
                worker.walker,
                worker.instance.poll_interval,
                config=self._config,
            )
            self._schedulers[instance_id] = scheduler

            self._tasks.extend([
                asyncio.create_task(worker.run(), name=f"worker_{instance_id}"),
                asyncio.create_task(scheduler.run(), name=f"scheduler_{instance_id}"),
                asyncio.create_task(
                    worker.backfill_if_empty(), name=f"backfill_{instance_id}"
                ),
            ])

        logger.info("Indexer registry started", tasks=len(self._tasks))

    async def stop_all(self) -> None:
        """Cancel every task and wait for them to finish."""
        for task in self._tasks:
            task.cancel()

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error("Task ended with error", task=task.get_name(), error=str(result))

        self._tasks = []
        self._schedulers = {}
        logger.info("Indexer registry stopped")

    async def run_once(self) -> dict[str, Any]:
        """
        Run one latest-mode walk per instance and drain the queues.

        Instances run concurrently; no background tasks are left behind.
        """
        async def run_instance(worker: SourceWorker) -> dict[str, Any]:
            stats = await worker.walker.latest()
            outcomes = await worker.run_pending()
            return {
                "pages": stats.pages,
                "queued": stats.queued,
                "completed": stats.completed,
                "outcomes": outcomes,
            }

        results = await asyncio.gather(
            *(run_instance(worker) for worker in self._workers.values()),
            return_exceptions=True,
        )

        summary: dict[str, Any] = {}
        for instance_id, result in zip(self._workers, results):
            if isinstance(result, Exception):
                logger.error("Run failed", instance_id=instance_id, error=str(result))
                summary[instance_id] = {"error": str(result)}
            else:
                summary[instance_id] = result
        return summary

    async def health_check(self) -> dict[str, Any]:
        """Health of every worker, keyed by instance id."""
        results = await asyncio.gather(
            *(worker.health_check() for worker in self._workers.values())
        )
        return dict(zip(self._workers, results))

    def status(self) -> dict[str, dict[str, Any]]:
        """Local state of every worker, keyed by instance id."""
        return {instance_id: worker.status() for instance_id, worker in self._workers.items()}
