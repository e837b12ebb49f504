"""
Per-instance deduplicating work queue.

Pairs an unbounded FIFO of IndexRequests with a set of outstanding
WorkKeys. A key stays outstanding from the moment it is accepted until the
worker releases it after processing, so a request for a key that is queued
or in flight is coalesced instead of queued twice.
"""

import asyncio
from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class WorkKey:
    """Unit of deduplication: one page of one subject."""

    subject_id: int
    page: int


@dataclass(frozen=True)
class IndexRequest:
    """A unit of work handed to the worker loop."""

    subject_id: int
    page: int

    @property
    def key(self) -> WorkKey:
        return WorkKey(self.subject_id, self.page)

    @classmethod
    def for_key(cls, key: WorkKey) -> "IndexRequest":
        return cls(subject_id=key.subject_id, page=key.page)


class DedupQueue:
    """
    FIFO of IndexRequests with at most one outstanding request per WorkKey.

    Usage:
        queue = DedupQueue()
        if await queue.enqueue(WorkKey(42, 1)):
            ...
        request = await queue.dequeue()
        try:
            ...
        finally:
            await queue.release(request.key)
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._outstanding: set[WorkKey] = set()
        self._pending: asyncio.Queue[IndexRequest] = asyncio.Queue()

    async def enqueue(self, key: WorkKey) -> bool:
        """
        Accept a key unless it is already outstanding.

        Returns:
            True if a new IndexRequest was queued, False if coalesced
        """
        async with self._lock:
            if key in self._outstanding:
                return False
            self._outstanding.add(key)
            self._pending.put_nowait(IndexRequest.for_key(key))
            return True

    async def dequeue(self) -> IndexRequest:
        """Wait for the next request. The key stays outstanding until released."""
        return await self._pending.get()

    def dequeue_nowait(self) -> IndexRequest | None:
        """Return the next request, or None if nothing is pending."""
        try:
            return self._pending.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def release(self, key: WorkKey) -> None:
        """Mark a key as fully processed so it can be enqueued again."""
        async with self._lock:
            self._outstanding.discard(key)

    def is_outstanding(self, key: WorkKey) -> bool:
        return key in self._outstanding

    @property
    def outstanding(self) -> int:
        """Keys queued or in flight."""
        return len(self._outstanding)

    @property
    def pending(self) -> int:
        """Requests waiting to be dequeued."""
        return self._pending.qsize()
