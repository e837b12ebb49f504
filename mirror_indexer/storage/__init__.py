"""Storage layer - PostgreSQL connection and subject repository."""

from mirror_indexer.storage.database import Database
from mirror_indexer.storage.repository import SubjectRepository

__all__ = ["Database", "SubjectRepository"]
