"""Incremental indexer - dedup queue, workers, walker, scheduler and registry."""

from mirror_indexer.indexer.backfill import BackfillWalker, WalkStats
from mirror_indexer.indexer.config import IndexerConfig
from mirror_indexer.indexer.queue import DedupQueue, IndexRequest, WorkKey
from mirror_indexer.indexer.registry import IndexerRegistry, create_source
from mirror_indexer.indexer.scheduler import Scheduler, next_aligned_wake
from mirror_indexer.indexer.staleness import needs_refetch
from mirror_indexer.indexer.worker import SourceWorker, WorkOutcome

__all__ = [
    "BackfillWalker",
    "DedupQueue",
    "IndexRequest",
    "IndexerConfig",
    "IndexerRegistry",
    "Scheduler",
    "SourceWorker",
    "WalkStats",
    "WorkKey",
    "WorkOutcome",
    "create_source",
    "needs_refetch",
    "next_aligned_wake",
]
