"""
Indexer timing configuration.

Settings can be overridden via environment variables prefixed with INDEXER_.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IndexerConfig(BaseSettings):
    """Walker pacing, scheduler behaviour and worker shutdown timings."""

    model_config = SettingsConfigDict(
        env_prefix="INDEXER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Backfill walker pacing
    listing_delay_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Pause between successive listing page requests",
    )
    error_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Pause after a listing error before the walk is abandoned",
    )

    # Startup
    backfill_on_empty: bool = Field(
        default=True,
        description="Run a full listing walk when an instance has no stored records",
    )
    schedule_on_start: bool = Field(
        default=True,
        description="Run the first latest-mode walk immediately instead of at the first boundary",
    )

    # Search
    search_enabled: bool = Field(
        default=True,
        description="Forward stored pages to the search index when one is configured",
    )
