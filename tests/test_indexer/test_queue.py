"""Tests for the per-instance dedup queue."""

import asyncio

import pytest

from mirror_indexer.indexer.queue import DedupQueue, IndexRequest, WorkKey


class TestWorkKey:
    """Tests for WorkKey and IndexRequest."""

    def test_keys_compare_by_value(self):
        assert WorkKey(42, 1) == WorkKey(42, 1)
        assert WorkKey(42, 1) != WorkKey(42, 2)
        assert len({WorkKey(42, 1), WorkKey(42, 1), WorkKey(7, 1)}) == 2

    def test_request_key_round_trip(self):
        request = IndexRequest.for_key(WorkKey(42, 3))

        assert request.subject_id == 42
        assert request.page == 3
        assert request.key == WorkKey(42, 3)


class TestDedupQueue:
    """Tests for DedupQueue."""

    @pytest.mark.asyncio
    async def test_enqueue_new_key(self):
        """A new key is accepted and queued."""
        queue = DedupQueue()

        assert await queue.enqueue(WorkKey(42, 1)) is True
        assert queue.outstanding == 1
        assert queue.pending == 1
        assert queue.is_outstanding(WorkKey(42, 1))

    @pytest.mark.asyncio
    async def test_duplicate_key_is_coalesced(self):
        """Only the first of two identical enqueues queues a request."""
        queue = DedupQueue()

        assert await queue.enqueue(WorkKey(42, 1)) is True
        assert await queue.enqueue(WorkKey(42, 1)) is False
        assert queue.pending == 1

    @pytest.mark.asyncio
    async def test_different_pages_are_distinct(self):
        queue = DedupQueue()

        assert await queue.enqueue(WorkKey(42, 1)) is True
        assert await queue.enqueue(WorkKey(42, 2)) is True
        assert queue.pending == 2

    @pytest.mark.asyncio
    async def test_dequeue_is_fifo(self):
        queue = DedupQueue()
        for subject_id in (3, 1, 2):
            await queue.enqueue(WorkKey(subject_id, 1))

        order = [(await queue.dequeue()).subject_id for _ in range(3)]

        assert order == [3, 1, 2]

    @pytest.mark.asyncio
    async def test_key_stays_outstanding_until_released(self):
        """Dequeue does not release; an in-flight key still coalesces."""
        queue = DedupQueue()
        await queue.enqueue(WorkKey(42, 1))

        request = await queue.dequeue()

        assert queue.pending == 0
        assert queue.outstanding == 1
        assert await queue.enqueue(WorkKey(42, 1)) is False

        await queue.release(request.key)

        assert queue.outstanding == 0
        assert await queue.enqueue(WorkKey(42, 1)) is True

    @pytest.mark.asyncio
    async def test_release_unknown_key_is_noop(self):
        queue = DedupQueue()
        await queue.release(WorkKey(1, 1))
        assert queue.outstanding == 0

    @pytest.mark.asyncio
    async def test_dequeue_waits_for_item(self):
        """Dequeue suspends until a request is enqueued."""
        queue = DedupQueue()
        waiter = asyncio.create_task(queue.dequeue())

        await asyncio.sleep(0)
        assert not waiter.done()

        await queue.enqueue(WorkKey(9, 1))
        request = await asyncio.wait_for(waiter, timeout=1.0)

        assert request.key == WorkKey(9, 1)

    def test_dequeue_nowait_empty(self):
        queue = DedupQueue()
        assert queue.dequeue_nowait() is None

    @pytest.mark.asyncio
    async def test_concurrent_enqueues_accept_once(self):
        """Concurrent enqueues of one key yield exactly one acceptance."""
        queue = DedupQueue()

        results = await asyncio.gather(*(queue.enqueue(WorkKey(5, 1)) for _ in range(20)))

        assert results.count(True) == 1
        assert queue.pending == 1
