"""Search index projection."""

from mirror_indexer.search.meili import MeilisearchClient

__all__ = ["MeilisearchClient"]
