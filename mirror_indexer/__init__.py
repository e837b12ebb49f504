"""mirror-indexer: incremental mirroring of Discourse forums and GitHub issue trackers."""

__version__ = "0.1.0"
