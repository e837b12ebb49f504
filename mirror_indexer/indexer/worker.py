"""
Source worker - consumes index requests for one source instance.

For each request:
1. Fetch the requested page of the subject's detail chain
2. Compare the summary against storage (needs_refetch)
3. Upsert the record (page 1 only) and the page's items
4. Forward the stored rows to the search index (best effort)
5. Enqueue the next page while pages keep coming back non-empty
6. Release the request's key

Every request ends in exactly one WorkOutcome. Failures are logged and the
request is dropped; the next listing walk or force refresh re-requests it.
"""

import asyncio
import time
from collections import Counter
from enum import Enum
from typing import Any

import structlog

from mirror_indexer.errors import ParseError, StorageError, TransportError
from mirror_indexer.indexer.backfill import BackfillWalker, WalkStats
from mirror_indexer.indexer.config import IndexerConfig
from mirror_indexer.indexer.queue import DedupQueue, IndexRequest, WorkKey
from mirror_indexer.indexer.staleness import needs_refetch
from mirror_indexer.ingestion.base_source import PaginatedSource
from mirror_indexer.ingestion.schemas import ChildItem, LocalRecord, SourceInstance
from mirror_indexer.observability.metrics import MetricsCollector, get_metrics
from mirror_indexer.search.meili import MeilisearchClient
from mirror_indexer.storage.repository import SubjectRepository

logger = structlog.get_logger(__name__)


class WorkOutcome(str, Enum):
    """Terminal state of one index request."""

    STORED = "stored"
    SKIPPED = "skipped"
    FETCH_FAILED = "fetch_failed"
    PARSE_FAILED = "parse_failed"
    STORE_FAILED = "store_failed"


class SourceWorker:
    """
    Worker owning the dedup queue and consumer loop of one source instance.

    Usage:
        worker = SourceWorker(source, storage, search)
        await worker.enqueue(subject_id=42)
        await worker.run()  # Runs until cancelled
    """

    def __init__(
        self,
        source: PaginatedSource,
        storage: SubjectRepository,
        search: MeilisearchClient | None = None,
        config: IndexerConfig | None = None,
        metrics: MetricsCollector | None = None,
        walker: BackfillWalker | None = None,
    ):
        """
        Initialize the worker.

        Args:
            source: Adapter for the instance this worker serves
            storage: Subject repository
            search: Search client, or None to skip the search projection
            config: Indexer configuration
            metrics: Metrics collector (global collector if None)
            walker: Listing walker (built from the other arguments if None)
        """
        self._source = source
        self._storage = storage
        self._config = config or IndexerConfig()
        self._search = search if self._config.search_enabled else None
        self._metrics = metrics or get_metrics()
        self._queue = DedupQueue()
        self._running = False
        self.walker = walker or BackfillWalker(
            source,
            storage,
            self.enqueue,
            config=self._config,
            metrics=self._metrics,
        )

    @property
    def instance(self) -> SourceInstance:
        return self._source.instance

    @property
    def instance_id(self) -> str:
        return self._source.instance.instance_id

    @property
    def source(self) -> PaginatedSource:
        return self._source

    @property
    def queue(self) -> DedupQueue:
        return self._queue

    def is_running(self) -> bool:
        """Check if the consumer loop is running."""
        return self._running

    async def enqueue(self, subject_id: int, page: int = 1) -> bool:
        """
        Request indexing of one page of a subject.

        Returns:
            True if queued, False if the same page is already queued or in flight
        """
        accepted = await self._queue.enqueue(WorkKey(subject_id, page))
        self._metrics.record_enqueue(self.instance_id, accepted)
        self._metrics.set_queue_depth(self.instance_id, self._queue.outstanding)
        if not accepted:
            logger.debug(
                "Request coalesced",
                instance_id=self.instance_id,
                subject_id=subject_id,
                page=page,
            )
        return accepted

    async def run(self) -> None:
        """
        Consume requests until cancelled.

        Errors in a single request never stop the loop.
        """
        self._running = True
        logger.info("Source worker started", instance_id=self.instance_id)

        try:
            while self._running:
                request = await self._queue.dequeue()
                await self._process_safely(request)
        except asyncio.CancelledError:
            logger.info("Source worker cancelled", instance_id=self.instance_id)
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop after the request currently being processed."""
        logger.info("Stopping source worker", instance_id=self.instance_id)
        self._running = False

    async def run_pending(self) -> dict[str, int]:
        """
        Process queued requests in the calling task until the queue is empty.

        Continuation pages enqueued along the way are processed too.

        Returns:
            Count of requests per outcome
        """
        outcomes: Counter[str] = Counter()
        while True:
            request = self._queue.dequeue_nowait()
            if request is None:
                break
            outcome = await self._process_safely(request)
            outcomes[outcome.value if outcome else "error"] += 1
        return dict(outcomes)

    async def backfill_if_empty(self) -> WalkStats | None:
        """
        Walk the full listing once if the instance has nothing stored yet.

        Returns:
            Walk statistics, or None if the backfill was skipped
        """
        if not self._config.backfill_on_empty:
            return None

        try:
            record_count = await self._storage.count_records(self.instance_id)
        except StorageError as e:
            logger.warning(
                "Could not count stored records, running backfill",
                instance_id=self.instance_id,
                error=str(e),
            )
            record_count = 0

        if record_count > 0:
            logger.info(
                "Skipping backfill, instance already has records",
                instance_id=self.instance_id,
                records=record_count,
            )
            return None

        logger.info("Starting backfill", instance_id=self.instance_id)
        return await self.walker.walk()

    async def _process_safely(self, request: IndexRequest) -> WorkOutcome | None:
        try:
            return await self.process(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(
                "Unexpected error processing request",
                instance_id=self.instance_id,
                subject_id=request.subject_id,
                page=request.page,
                error=str(e),
            )
            return None

    async def process(self, request: IndexRequest) -> WorkOutcome:
        """
        Process one request and release its key.

        The key is released only after any continuation page has been
        enqueued, so the next page of a subject is always queued behind it.
        """
        try:
            outcome = await self._index(request)
            self._metrics.record_outcome(self.instance_id, outcome.value)
            return outcome
        finally:
            await self._queue.release(request.key)
            self._metrics.set_queue_depth(self.instance_id, self._queue.outstanding)

    async def _index(self, request: IndexRequest) -> WorkOutcome:
        log = logger.bind(
            instance_id=self.instance_id,
            subject_id=request.subject_id,
            page=request.page,
        )

        start_time = time.monotonic()
        try:
            page = await self._source.fetch_subject_page(request.subject_id, request.page)
        except TransportError as e:
            log.warning("Fetch failed", status_code=e.status_code, error=str(e))
            return WorkOutcome.FETCH_FAILED
        except ParseError as e:
            log.warning("Response could not be parsed", url=e.url, error=str(e))
            return WorkOutcome.PARSE_FAILED
        finally:
            self._metrics.record_fetch(
                self.instance_id, "subject", time.monotonic() - start_time
            )

        if page.is_exhausted:
            log.debug("Page past the end of the subject")
            return WorkOutcome.SKIPPED

        try:
            local = await self._storage.get_record(self.instance_id, request.subject_id)
            child_count = await self._storage.count_children(
                self.instance_id, request.subject_id
            )
        except StorageError as e:
            log.error("Storage lookup failed", error=str(e))
            return WorkOutcome.STORE_FAILED

        if not needs_refetch(local, page.summary, child_count):
            log.debug(
                "Subject unchanged, skipping",
                item_count=page.summary.item_count,
                stored_items=child_count,
            )
            return WorkOutcome.SKIPPED

        stored = True
        record = page.record if request.page == 1 else None

        if record is not None:
            try:
                await self._storage.upsert_record(record)
            except StorageError as e:
                log.error("Record upsert failed", error=str(e))
                stored = False
                record = None

        try:
            await self._storage.upsert_children(page.children)
            children = page.children
        except StorageError as e:
            log.error("Item upsert failed", items=len(page.children), error=str(e))
            stored = False
            children = []

        await self._forward_to_search(record, children, log)

        if not stored:
            return WorkOutcome.STORE_FAILED

        if not page.is_empty:
            await self.enqueue(request.subject_id, request.page + 1)

        log.info("Page indexed", items=len(page.children))
        return WorkOutcome.STORED

    async def _forward_to_search(
        self,
        record: LocalRecord | None,
        children: list[ChildItem],
        log: Any,
    ) -> None:
        if self._search is None:
            return

        documents = self._source.search_documents(record, children)
        if not documents:
            return

        try:
            await self._search.upsert_documents(self._source.search_index, documents)
        except Exception as e:
            log.warning(
                "Search upsert failed",
                index=self._source.search_index,
                documents=len(documents),
                error=str(e),
            )
            self._metrics.record_search_error(self.instance_id)

    def status(self) -> dict[str, Any]:
        """Local queue and loop state, without touching the network."""
        return {
            "instance_id": self.instance_id,
            "kind": self.instance.kind.value,
            "running": self._running,
            "outstanding": self._queue.outstanding,
            "pending": self._queue.pending,
        }

    async def health_check(self) -> dict[str, Any]:
        """
        Check health of the worker, including a listing request to the source.

        Returns:
            Dictionary with health status
        """
        source_healthy = await self._source.health_check()
        self._metrics.set_instance_health(self.instance_id, source_healthy)

        return {**self.status(), "source_healthy": source_healthy}
