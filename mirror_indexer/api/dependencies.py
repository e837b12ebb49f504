"""
Dependency injection for FastAPI endpoints.

The registry and database are created by the process that serves the app
(see cli.run) and attached to app.state by create_app().
"""

from fastapi import HTTPException, Request, status

from mirror_indexer.indexer.registry import IndexerRegistry
from mirror_indexer.storage.database import Database


def get_registry(request: Request) -> IndexerRegistry:
    """Get the indexer registry serving this app."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Indexer is not running",
        )
    return registry


def get_database(request: Request) -> Database | None:
    """Get the database, or None when the app runs without one."""
    return getattr(request.app.state, "database", None)
