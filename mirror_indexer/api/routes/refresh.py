"""
Force refresh endpoint.

Enqueues one page of a subject and returns immediately; processing
happens on the instance's worker loop.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from mirror_indexer.api.dependencies import get_registry
from mirror_indexer.api.models import ErrorResponse, RefreshResponse
from mirror_indexer.errors import UnknownInstance
from mirror_indexer.indexer.registry import IndexerRegistry

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post(
    "/instances/{instance_id}/subjects/{subject_id}/refresh",
    response_model=RefreshResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": ErrorResponse}},
    summary="Queue a subject page for re-indexing",
)
async def refresh_subject(
    instance_id: str,
    subject_id: int,
    page: int = Query(default=1, ge=1, description="Detail page to fetch"),
    registry: IndexerRegistry = Depends(get_registry),
) -> RefreshResponse:
    try:
        queued = await registry.enqueue(instance_id, subject_id, page)
    except UnknownInstance as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    logger.info(
        "Refresh requested",
        instance_id=instance_id,
        subject_id=subject_id,
        page=page,
        queued=queued,
    )
    return RefreshResponse(
        instance_id=instance_id,
        subject_id=subject_id,
        page=page,
        queued=queued,
    )
