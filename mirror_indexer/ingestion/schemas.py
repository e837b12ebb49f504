"""
Canonical schemas shared by the source adapters, the worker and storage.

Adapters translate platform responses (Discourse topics and posts, GitHub
issues and comments) into these shapes; everything downstream of the
adapters is platform agnostic.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    """Supported source platforms."""

    DISCOURSE = "discourse"
    GITHUB = "github"


@dataclass(frozen=True)
class SourceInstance:
    """
    One configured external endpoint: a forum deployment or a tracker repository.

    Built once from configuration at startup and never mutated. For GitHub
    instances, base_url is the REST API root and repository is "owner/repo".

    Attributes:
        instance_id: Stable identifier used in storage keys and enqueue calls
        kind: Which adapter serves this instance
        base_url: Root URL of the remote API
        poll_interval: Scheduler tick interval (aligned to the wall clock)
        repository: "owner/repo" for GitHub instances
        latest_pages: Listing pages walked per scheduler tick (None = all)
        search_index: Search index override (defaults to the per-kind index)
    """

    instance_id: str
    kind: SourceKind
    base_url: str
    poll_interval: timedelta
    repository: str | None = None
    latest_pages: int | None = None
    search_index: str | None = None

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval.total_seconds()


class RemoteSummary(BaseModel):
    """Freshly fetched subject summary, used only for staleness decisions."""

    remote_id: int
    item_count: int = Field(default=0, ge=0)
    last_activity_at: datetime | None = None
    title: str | None = None


class LocalRecord(BaseModel):
    """
    Stored counterpart of a subject (forum topic or tracker issue).

    Primary key is (instance_id, subject_id).
    """

    instance_id: str
    subject_id: int
    kind: SourceKind
    title: str
    slug: str | None = None
    state: str | None = None
    item_count: int = Field(default=0, ge=0)
    last_activity_at: datetime | None = None
    created_at: datetime | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class ChildItem(BaseModel):
    """
    A post (forum) or comment (tracker) belonging to a subject.

    Primary key is (instance_id, subject_id, item_id).
    """

    instance_id: str
    subject_id: int
    item_id: int
    position: int
    author: str | None = None
    body: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class SearchDocument(BaseModel):
    """
    Write-only projection sent to the search index.

    entity_id is a stable composite key ("topic_12", "post_345", ...) so
    repeated upserts replace rather than duplicate.
    """

    entity_id: str
    entity_type: str
    instance_id: str
    subject_id: int
    item_id: int | None = None
    position: int | None = None
    username: str | None = None
    title: str | None = None
    slug: str | None = None
    body: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the search engine, omitting unset fields."""
        return self.model_dump(exclude_none=True)


class SubjectPage(BaseModel):
    """
    One parsed page of a subject's detail endpoint.

    record is None only for a page past the end of the chain, which some
    platforms answer with 404 instead of an empty page.
    """

    summary: RemoteSummary
    record: LocalRecord | None = None
    children: list[ChildItem] = Field(default_factory=list)

    @classmethod
    def exhausted(cls, subject_id: int) -> "SubjectPage":
        """Page marker for a request beyond the last page of a subject."""
        return cls(summary=RemoteSummary(remote_id=subject_id))

    @property
    def is_empty(self) -> bool:
        return not self.children

    @property
    def is_exhausted(self) -> bool:
        return self.record is None


class ListingPage(BaseModel):
    """One parsed page of an instance's listing endpoint."""

    subjects: list[RemoteSummary] = Field(default_factory=list)
    next_cursor: str | None = None
