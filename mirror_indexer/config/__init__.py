"""Configuration module."""

from mirror_indexer.config.instances import DEFAULT_INSTANCES, load_instances, parse_duration
from mirror_indexer.config.settings import Settings, get_settings

__all__ = [
    "DEFAULT_INSTANCES",
    "Settings",
    "get_settings",
    "load_instances",
    "parse_duration",
]
