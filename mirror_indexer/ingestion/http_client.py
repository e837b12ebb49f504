"""
HTTP infrastructure layer with retry logic and token rotation.

Provides:
- APIKeyRotator: Round-robin rotation for comma-separated API tokens
- RetryConfig: Exponential backoff configuration
- HTTPClient: Async HTTP client with automatic retry on transient failures

Retries here are HTTP-level only (429/5xx, timeouts, dropped connections).
Once they are exhausted a TransportError is raised and the caller decides
what to do with the failed unit of work.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

import httpx

from mirror_indexer.errors import RateLimitError, TransportError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_EXCEPTIONS = (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError)


@dataclass
class APIKeyRotator:
    """
    Round-robin token rotation from a comma-separated setting.

    Lets several GitHub tokens share the polling load so that one token's
    hourly quota is not exhausted by a large backfill.

    Example:
        rotator = APIKeyRotator.from_env_var("ghp_a,ghp_b")
        token = await rotator.get_key()
    """

    keys: list[str]
    _current_index: int = field(default=0, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    def from_env_var(cls, value: str | None) -> "APIKeyRotator | None":
        """
        Create rotator from comma-separated value.

        Returns:
            APIKeyRotator instance or None if no keys provided
        """
        if not value:
            return None

        keys = [k.strip() for k in value.split(",") if k.strip()]
        if not keys:
            return None

        return cls(keys=keys)

    async def get_key(self) -> str:
        """Return the next key in rotation."""
        async with self._lock:
            key = self.keys[self._current_index]
            self._current_index = (self._current_index + 1) % len(self.keys)
            return key

    @property
    def key_count(self) -> int:
        return len(self.keys)


@dataclass
class RetryConfig:
    """
    Exponential backoff configuration for HTTP retries.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 3
    max_backoff_seconds: float = 60.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    def calculate_backoff(self, attempt: int) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS_CODES

    def is_retryable_exception(self, exc: Exception) -> bool:
        return isinstance(exc, RETRYABLE_EXCEPTIONS)


class HTTPClient:
    """
    Async HTTP client shared by every source adapter and the search client.

    Features:
    - Exponential backoff with jitter on 429, 5xx, timeouts and connect errors
    - Optional bearer token rotation per request
    - Non-2xx responses surface as TransportError with status and body
    - Context manager for proper resource cleanup

    Example:
        async with HTTPClient(RetryConfig(max_retries=2)) as client:
            response = await client.get("https://ethresear.ch/latest.json")
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        user_agent: str = "mirror-indexer/0.1.0",
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize HTTP client.

        Args:
            retry_config: Configuration for retry behavior. Uses defaults if None.
            timeout: Request timeout in seconds.
            user_agent: User-Agent header sent with every request.
            client: Pre-built httpx client (ownership stays with the caller).
        """
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HTTPClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def open(self) -> None:
        """Create the underlying connection pool if not already open."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
            self._owns_client = True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        token_rotator: APIKeyRotator | None = None,
    ) -> httpx.Response:
        """
        Perform GET request with retry logic.

        Raises:
            TransportError: On non-retryable errors or after retries exhausted
            RateLimitError: When rate limited and retries exhausted
        """
        return await self.request(
            "GET", url, params=params, headers=headers, token_rotator=token_rotator
        )

    async def post(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> httpx.Response:
        """Perform POST request with retry logic."""
        return await self.request(
            "POST", url, params=params, headers=headers, json_body=json_body
        )

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        token_rotator: APIKeyRotator | None = None,
    ) -> httpx.Response:
        """
        Execute an HTTP request, retrying transient failures.

        Rotates the bearer token on each attempt if a rotator is provided.
        """
        if self._client is None:
            raise RuntimeError("HTTPClient is not open; use it as an async context manager")

        last_status_code: int | None = None
        last_response_body: str | None = None
        attempts = self.retry_config.max_retries + 1

        for attempt in range(attempts):
            request_headers = dict(headers) if headers else {}
            if token_rotator:
                request_headers["Authorization"] = f"Bearer {await token_rotator.get_key()}"

            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params or None,
                    headers=request_headers or None,
                    json=json_body,
                )
            except RETRYABLE_EXCEPTIONS as e:
                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        f"Retryable error {type(e).__name__} for {url}, "
                        f"attempt {attempt + 1}/{attempts}, backing off {backoff:.2f}s"
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TransportError(
                    f"{method} {url} failed after {attempt + 1} attempts: {e}",
                    status_code=last_status_code,
                ) from e
            except httpx.HTTPError as e:
                raise TransportError(f"{method} {url} failed: {e}") from e

            if self.retry_config.is_retryable_status(response.status_code):
                last_status_code = response.status_code
                last_response_body = response.text

                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        f"Retryable status {response.status_code} from {url}, "
                        f"attempt {attempt + 1}/{attempts}, backing off {backoff:.2f}s"
                    )
                    await asyncio.sleep(backoff)
                    continue

                error_cls = RateLimitError if response.status_code == 429 else TransportError
                raise error_cls(
                    f"{method} {url} failed with status {response.status_code} "
                    f"after {attempt + 1} attempts",
                    status_code=response.status_code,
                    response_body=last_response_body,
                )

            if response.status_code >= 400:
                raise TransportError(
                    f"{method} {url} failed with status {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                )

            return response

        raise TransportError(
            f"{method} {url} failed after {attempts} attempts",
            status_code=last_status_code,
            response_body=last_response_body,
        )
