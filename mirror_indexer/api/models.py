"""
Request and response models for the indexer API.
"""

from pydantic import BaseModel, Field


class RefreshResponse(BaseModel):
    """Response model for a force refresh."""

    instance_id: str = Field(..., description="Source instance the request was sent to")
    subject_id: int = Field(..., description="Topic id or issue number")
    page: int = Field(..., description="Detail page requested")
    queued: bool = Field(
        ...,
        description="False when the same page was already queued or in flight",
    )


class ComponentHealth(BaseModel):
    """Health status for an individual component."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency in milliseconds")
    details: dict | None = Field(default=None, description="Additional details")


class InstanceStatus(BaseModel):
    """Queue and loop state of one source worker."""

    instance_id: str
    kind: str
    running: bool
    outstanding: int = Field(..., description="Keys queued or in flight")
    pending: int = Field(..., description="Requests waiting to be processed")


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    instances: dict[str, InstanceStatus] = Field(
        default_factory=dict,
        description="Per-instance worker state",
    )
    components: dict[str, ComponentHealth] = Field(
        default_factory=dict,
        description="Infrastructure component health",
    )
    version: str = Field(..., description="Service version")


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(..., description="Error message")
    error_type: str = Field(default="error", description="Error type identifier")
