"""Meilisearch client for the write-only search projection.

Documents are sent with addOrReplace semantics
(POST /indexes/{index}/documents?primaryKey=...), so re-sending a page
replaces earlier copies of the same entity_id. Meilisearch answers with a
task id; the client does not wait for the task to finish.
"""

import logging
from typing import Any

from mirror_indexer.errors import SearchError, TransportError
from mirror_indexer.ingestion.http_client import HTTPClient
from mirror_indexer.ingestion.schemas import SearchDocument

logger = logging.getLogger(__name__)


class MeilisearchClient:
    """Pushes SearchDocuments to a Meilisearch server over the shared HTTP client."""

    def __init__(
        self,
        url: str,
        http_client: HTTPClient,
        api_key: str | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._http = http_client
        self._api_key = api_key

    @property
    def url(self) -> str:
        return self._url

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def upsert_documents(
        self,
        index_name: str,
        documents: list[SearchDocument],
        key_field: str = "entity_id",
    ) -> int | None:
        """Add or replace documents in an index.

        Args:
            index_name: Target index (created by Meilisearch on first write).
            documents: Documents to send; an empty list is a no-op.
            key_field: Primary key attribute of the index.

        Returns:
            The Meilisearch task uid, or None when nothing was sent.

        Raises:
            SearchError: If the server rejects the batch or is unreachable.
        """
        if not documents:
            return None

        url = f"{self._url}/indexes/{index_name}/documents"
        try:
            response = await self._http.post(
                url,
                params={"primaryKey": key_field},
                headers=self._headers(),
                json_body=[doc.to_payload() for doc in documents],
            )
        except TransportError as e:
            raise SearchError(
                f"Upsert of {len(documents)} documents into '{index_name}' failed: {e}",
                status_code=e.status_code,
            ) from e

        task: dict[str, Any] = response.json() if response.content else {}
        task_uid = task.get("taskUid")
        logger.debug(
            "Queued %d documents into %s (task %s)", len(documents), index_name, task_uid
        )
        return task_uid

    async def health_check(self) -> bool:
        """Check that the server answers /health with status 'available'."""
        try:
            response = await self._http.get(f"{self._url}/health", headers=self._headers())
            return response.json().get("status") == "available"
        except Exception as e:
            logger.warning("Meilisearch health check failed: %s", e)
            return False
