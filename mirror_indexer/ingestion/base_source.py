"""
Base interface for paginated sources.

A paginated source exposes two chains of pages:
- a listing chain (latest topics, repository issues) walked by the backfill
  walker and the scheduler via an opaque cursor, and
- a per-subject detail chain (posts of a topic, comments of an issue)
  walked one page at a time by the source worker.

Subclasses implement the platform-specific URLs and response mapping; the
base class handles rate limiting, JSON decoding and schema validation.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import TypeAdapter, ValidationError

from mirror_indexer.errors import ParseError
from mirror_indexer.ingestion.http_client import APIKeyRotator, HTTPClient
from mirror_indexer.ingestion.schemas import (
    ChildItem,
    ListingPage,
    LocalRecord,
    SearchDocument,
    SourceInstance,
    SourceKind,
    SubjectPage,
)

logger = logging.getLogger(__name__)


@dataclass
class RateLimiter:
    """
    Simple token bucket rate limiter.

    Allows `rate` requests per minute with burst capacity.
    """

    rate: int  # requests per minute
    _tokens: float = field(init=False)
    _last_update: float = field(init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.rate)
        self._last_update = time.monotonic()

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_update
            self._last_update = now

            self._tokens = min(
                float(self.rate),
                self._tokens + elapsed * (self.rate / 60.0),
            )

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * 60.0 / self.rate
                logger.debug(f"Rate limited, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 0
            else:
                self._tokens -= 1


class PaginatedSource(ABC):
    """
    Abstract base class for source adapters.

    Subclasses must implement:
        - kind: SourceKind served by the adapter
        - fetch_listing(): one page of the listing chain
        - fetch_subject_page(): one page of a subject's detail chain
        - search_documents(): projection of a stored page for the search index

    The base class handles:
        - Per-instance rate limiting (RateLimiter)
        - JSON decoding and pydantic validation (ParseError on failure)
    """

    def __init__(
        self,
        instance: SourceInstance,
        http_client: HTTPClient,
        search_index: str,
        rate_limit: int = 60,
        token_rotator: APIKeyRotator | None = None,
    ):
        """
        Initialize the adapter.

        Args:
            instance: The source instance this adapter talks to
            http_client: Shared HTTP client (owned by the caller)
            search_index: Search index receiving this source's documents
            rate_limit: Maximum requests per minute against this instance
            token_rotator: Optional bearer tokens for authenticated APIs
        """
        self.instance = instance
        self.search_index = search_index
        self._http = http_client
        self._rate_limiter = RateLimiter(rate=rate_limit)
        self._token_rotator = token_rotator

    @property
    @abstractmethod
    def kind(self) -> SourceKind:
        """Return the platform this adapter handles."""
        ...

    @property
    def name(self) -> str:
        return f"{self.kind.value}:{self.instance.instance_id}"

    @property
    def base_url(self) -> str:
        return self.instance.base_url.rstrip("/")

    @abstractmethod
    async def fetch_listing(self, cursor: str | None = None) -> ListingPage:
        """
        Fetch one page of the instance listing.

        Args:
            cursor: Continuation token from the previous ListingPage, or
                None for the first page

        Raises:
            TransportError, ParseError
        """
        ...

    @abstractmethod
    async def fetch_subject_page(self, subject_id: int, page: int) -> SubjectPage:
        """
        Fetch one page of a subject's detail chain (pages start at 1).

        Raises:
            TransportError, ParseError
        """
        ...

    @abstractmethod
    def search_documents(
        self,
        record: LocalRecord | None,
        children: list[ChildItem],
    ) -> list[SearchDocument]:
        """Project a stored record and/or children into search documents."""
        ...

    async def _get_model(
        self,
        url: str,
        model: Any,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        GET a URL and validate the JSON body.

        model may be a pydantic model or a generic such as list[Model].
        """
        data = await self._get_json(url, params=params)
        try:
            return TypeAdapter(model).validate_python(data)
        except ValidationError as e:
            raise ParseError(
                f"Unexpected response shape from {url}: {e.error_count()} validation errors",
                url=url,
            ) from e

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        await self._rate_limiter.acquire()
        response = await self._http.get(
            url,
            params=params,
            headers={"Accept": "application/json"},
            token_rotator=self._token_rotator,
        )
        try:
            return response.json()
        except ValueError as e:
            body = response.text[:200]
            raise ParseError(
                f"Invalid JSON from {url}: {e}. Body starts with: {body!r}",
                url=url,
            ) from e

    async def health_check(self) -> bool:
        """Check that the listing endpoint answers."""
        try:
            await self.fetch_listing()
            return True
        except Exception as e:
            logger.warning(f"Health check failed for {self.name}: {e}")
            return False
