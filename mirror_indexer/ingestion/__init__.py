"""Source adapters and the shared HTTP layer."""

from mirror_indexer.ingestion.base_source import PaginatedSource, RateLimiter
from mirror_indexer.ingestion.discourse_source import DiscourseSource
from mirror_indexer.ingestion.github_source import GitHubSource
from mirror_indexer.ingestion.http_client import APIKeyRotator, HTTPClient, RetryConfig
from mirror_indexer.ingestion.schemas import (
    ChildItem,
    ListingPage,
    LocalRecord,
    RemoteSummary,
    SearchDocument,
    SourceInstance,
    SourceKind,
    SubjectPage,
)

__all__ = [
    "APIKeyRotator",
    "ChildItem",
    "DiscourseSource",
    "GitHubSource",
    "HTTPClient",
    "ListingPage",
    "LocalRecord",
    "PaginatedSource",
    "RateLimiter",
    "RemoteSummary",
    "RetryConfig",
    "SearchDocument",
    "SourceInstance",
    "SourceKind",
    "SubjectPage",
]
