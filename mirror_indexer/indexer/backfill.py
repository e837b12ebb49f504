"""
Listing walker.

Walks an instance's listing chain page by page and enqueues page 1 of
every subject whose summary disagrees with storage. Used in two modes:
- backfill: the full chain, once, when an instance has no stored records
- latest:   the first `latest_pages` pages, on every scheduler tick

A listing failure ends the walk early; the next scheduler tick starts
again from the first page.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from mirror_indexer.errors import ParseError, StorageError, TransportError
from mirror_indexer.indexer.config import IndexerConfig
from mirror_indexer.indexer.staleness import needs_refetch
from mirror_indexer.ingestion.base_source import PaginatedSource
from mirror_indexer.ingestion.schemas import RemoteSummary
from mirror_indexer.observability.metrics import MetricsCollector, get_metrics
from mirror_indexer.storage.repository import SubjectRepository

logger = structlog.get_logger(__name__)

EnqueueFn = Callable[[int, int], Awaitable[bool]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class WalkStats:
    """Summary of one listing walk."""

    pages: int = 0
    subjects: int = 0
    queued: int = 0
    completed: bool = False


class BackfillWalker:
    """
    Walks the listing chain of one source instance.

    Usage:
        walker = BackfillWalker(source, storage, worker.enqueue)
        stats = await walker.walk()        # full chain
        stats = await walker.latest()      # bounded by instance.latest_pages
    """

    def __init__(
        self,
        source: PaginatedSource,
        storage: SubjectRepository,
        enqueue: EnqueueFn,
        config: IndexerConfig | None = None,
        metrics: MetricsCollector | None = None,
        sleep: SleepFn | None = None,
    ):
        """
        Initialize the walker.

        Args:
            source: Adapter providing fetch_listing()
            storage: Repository consulted for the staleness decision
            enqueue: Callback taking (subject_id, page), normally SourceWorker.enqueue
            config: Pacing configuration
            metrics: Metrics collector (global collector if None)
            sleep: Awaitable sleep used for pacing (asyncio.sleep if None)
        """
        self._source = source
        self._storage = storage
        self._enqueue = enqueue
        self._config = config or IndexerConfig()
        self._metrics = metrics or get_metrics()
        self._sleep = sleep or asyncio.sleep

    @property
    def instance_id(self) -> str:
        return self._source.instance.instance_id

    async def latest(self) -> WalkStats:
        """Walk the first pages of the listing, as configured for the instance."""
        return await self.walk(
            max_pages=self._source.instance.latest_pages,
            mode="latest",
        )

    async def walk(self, max_pages: int | None = None, mode: str = "backfill") -> WalkStats:
        """
        Walk the listing chain and enqueue stale subjects.

        Args:
            max_pages: Stop after this many pages (None = follow the chain to its end)
            mode: Label used in logs and metrics

        Returns:
            WalkStats; completed is False when the walk was aborted by an error
        """
        stats = WalkStats()
        cursor: str | None = None

        while True:
            if max_pages is not None and stats.pages >= max_pages:
                stats.completed = True
                break

            try:
                listing = await self._source.fetch_listing(cursor)
            except (TransportError, ParseError) as e:
                logger.error(
                    "Listing fetch failed, abandoning walk",
                    instance_id=self.instance_id,
                    mode=mode,
                    page=stats.pages + 1,
                    error=str(e),
                )
                await self._sleep(self._config.error_delay_seconds)
                return stats

            stats.pages += 1
            self._metrics.record_listing_page(self.instance_id, mode)

            for summary in listing.subjects:
                stats.subjects += 1
                if await self._is_stale(summary):
                    if await self._enqueue(summary.remote_id, 1):
                        stats.queued += 1

            logger.info(
                "Listing page walked",
                instance_id=self.instance_id,
                mode=mode,
                page=stats.pages,
                subjects=len(listing.subjects),
                queued_total=stats.queued,
            )

            # The adapter ends the chain; a page may be empty after filtering
            if not listing.next_cursor:
                stats.completed = True
                break

            cursor = listing.next_cursor
            if max_pages is None or stats.pages < max_pages:
                await self._sleep(self._config.listing_delay_seconds)

        logger.info(
            "Listing walk finished",
            instance_id=self.instance_id,
            mode=mode,
            pages=stats.pages,
            subjects=stats.subjects,
            queued=stats.queued,
        )
        return stats

    async def _is_stale(self, summary: RemoteSummary) -> bool:
        try:
            local = await self._storage.get_record(self.instance_id, summary.remote_id)
            child_count = 0
            if local is not None:
                child_count = await self._storage.count_children(
                    self.instance_id, summary.remote_id
                )
        except StorageError as e:
            # The worker repeats the check before writing anything
            logger.warning(
                "Storage lookup failed during walk, queueing subject",
                instance_id=self.instance_id,
                subject_id=summary.remote_id,
                error=str(e),
            )
            return True

        return needs_refetch(local, summary, child_count)
