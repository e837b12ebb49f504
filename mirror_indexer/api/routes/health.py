"""
Health check endpoint.
"""

import time

import structlog
from fastapi import APIRouter, Depends

from mirror_indexer import __version__
from mirror_indexer.api.dependencies import get_database, get_registry
from mirror_indexer.api.models import ComponentHealth, HealthResponse, InstanceStatus
from mirror_indexer.indexer.registry import IndexerRegistry
from mirror_indexer.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _check_database(db: Database) -> ComponentHealth:
    """Check database connectivity and measure latency."""
    start = time.perf_counter()
    try:
        healthy = await db.health_check()
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="healthy" if healthy else "unhealthy",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Report worker state per source instance and database connectivity.",
)
async def health_check(
    registry: IndexerRegistry = Depends(get_registry),
    db: Database | None = Depends(get_database),
) -> HealthResponse:
    """
    Status logic:
    - unhealthy: database is down
    - degraded: at least one worker loop is not running
    - healthy: all components operational
    """
    instances = {
        instance_id: InstanceStatus(**state)
        for instance_id, state in registry.status().items()
    }

    components: dict[str, ComponentHealth] = {}
    if db is not None:
        components["database"] = await _check_database(db)

    if any(c.status == "unhealthy" for c in components.values()):
        status = "unhealthy"
    elif not all(i.running for i in instances.values()):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        instances=instances,
        components=components,
        version=__version__,
    )
