"""
Error taxonomy for the indexer.

Fetch-side errors (TransportError, ParseError) abort a single work item
and never reach the worker loop. UnknownInstance is raised synchronously
to callers of enqueue. Storage and search errors wrap collaborator
failures so the worker can decide whether they are fatal to the item.
"""


class IndexerError(Exception):
    """Base exception for all indexer errors."""


class TransportError(IndexerError):
    """Network failure, timeout, or non-2xx response from a remote source."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class RateLimitError(TransportError):
    """Raised when rate limit is hit and all retries exhausted."""

    pass


class ParseError(IndexerError):
    """Remote response body could not be decoded into the expected shape."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class UnknownInstance(IndexerError, LookupError):
    """Enqueue referenced a source instance that is not configured."""

    def __init__(self, instance_id: str):
        super().__init__(f"Source instance '{instance_id}' not found")
        self.instance_id = instance_id


class StorageError(IndexerError):
    """Storage collaborator failed to read or write."""


class SearchError(IndexerError):
    """Search collaborator failed to accept documents."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
