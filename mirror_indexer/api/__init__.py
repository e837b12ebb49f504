"""
FastAPI service for the indexer.

Provides:
- POST /instances/{instance_id}/subjects/{subject_id}/refresh - Force refresh
- GET /health - Service health check
"""

from mirror_indexer.api.app import create_app

__all__ = ["create_app"]
