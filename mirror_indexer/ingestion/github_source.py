"""
GitHub issue tracker adapter.

Listing chain: GET /repos/{owner}/{repo}/issues?state=all, numbered pages of
100, most recently updated first. Pull requests share the issues endpoint
and are skipped.
Detail chain: GET /repos/{owner}/{repo}/issues/{number} for the summary plus
GET .../issues/{number}/comments?page={n} for the comments on that page.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mirror_indexer.ingestion.base_source import PaginatedSource
from mirror_indexer.ingestion.http_client import APIKeyRotator, HTTPClient
from mirror_indexer.ingestion.schemas import (
    ChildItem,
    ListingPage,
    LocalRecord,
    RemoteSummary,
    SearchDocument,
    SourceInstance,
    SourceKind,
    SubjectPage,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
PER_PAGE = 100


class _GitHubModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GitHubUser(_GitHubModel):
    login: str
    id: int | None = None


class GitHubLabel(_GitHubModel):
    name: str


class GitHubIssue(_GitHubModel):
    id: int
    number: int
    title: str
    state: str = "open"
    body: str | None = None
    user: GitHubUser | None = None
    labels: list[GitHubLabel] = Field(default_factory=list)
    locked: bool = False
    comments: int = 0
    html_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    pull_request: dict[str, Any] | None = None

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None


class GitHubComment(_GitHubModel):
    id: int
    body: str | None = None
    user: GitHubUser | None = None
    html_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GitHubSource(PaginatedSource):
    """
    Adapter for one GitHub repository's issues.

    The subject id is the issue number, so enqueue calls and webhooks can
    use the number users see in URLs.
    """

    def __init__(
        self,
        instance: SourceInstance,
        http_client: HTTPClient,
        search_index: str,
        rate_limit: int = 60,
        token_rotator: APIKeyRotator | None = None,
    ):
        if not instance.repository or "/" not in instance.repository:
            raise ValueError(
                f"GitHub instance '{instance.instance_id}' needs repository='owner/repo'"
            )
        super().__init__(
            instance,
            http_client,
            search_index=search_index,
            rate_limit=rate_limit,
            token_rotator=token_rotator,
        )
        self.owner, self.repo = instance.repository.split("/", 1)

    @property
    def kind(self) -> SourceKind:
        return SourceKind.GITHUB

    @property
    def repo_url(self) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}"

    async def fetch_listing(self, cursor: str | None = None) -> ListingPage:
        page = int(cursor) if cursor else 1
        issues = await self._get_model(
            f"{self.repo_url}/issues",
            list[GitHubIssue],
            params={
                "state": "all",
                "sort": "updated",
                "direction": "desc",
                "per_page": PER_PAGE,
                "page": page,
            },
        )

        subjects = [
            self._summary(issue) for issue in issues if not issue.is_pull_request
        ]
        # A short page is the last one; pull requests still count toward its size
        next_cursor = str(page + 1) if len(issues) >= PER_PAGE else None

        return ListingPage(subjects=subjects, next_cursor=next_cursor)

    async def fetch_subject_page(self, subject_id: int, page: int) -> SubjectPage:
        issue_url = f"{self.repo_url}/issues/{subject_id}"
        issue = await self._get_model(issue_url, GitHubIssue)

        comments = await self._get_model(
            f"{issue_url}/comments",
            list[GitHubComment],
            params={"per_page": PER_PAGE, "page": page},
        )
        offset = (page - 1) * PER_PAGE

        return SubjectPage(
            summary=self._summary(issue),
            record=self._to_record(issue),
            children=[
                self._to_child(issue.number, offset + index + 1, comment)
                for index, comment in enumerate(comments)
            ],
        )

    def _summary(self, issue: GitHubIssue) -> RemoteSummary:
        return RemoteSummary(
            remote_id=issue.number,
            item_count=issue.comments,
            last_activity_at=issue.updated_at,
            title=issue.title,
        )

    def _to_record(self, issue: GitHubIssue) -> LocalRecord:
        return LocalRecord(
            instance_id=self.instance.instance_id,
            subject_id=issue.number,
            kind=self.kind,
            title=issue.title,
            state=issue.state,
            item_count=issue.comments,
            last_activity_at=issue.updated_at,
            created_at=issue.created_at,
            extra={
                "id": issue.id,
                "user": issue.user.login if issue.user else None,
                "labels": [label.name for label in issue.labels],
                "locked": issue.locked,
                "html_url": issue.html_url,
                "body": issue.body,
            },
        )

    def _to_child(self, number: int, position: int, comment: GitHubComment) -> ChildItem:
        return ChildItem(
            instance_id=self.instance.instance_id,
            subject_id=number,
            item_id=comment.id,
            position=position,
            author=comment.user.login if comment.user else None,
            body=comment.body,
            created_at=comment.created_at,
            updated_at=comment.updated_at,
            extra={"html_url": comment.html_url},
        )

    def search_documents(
        self,
        record: LocalRecord | None,
        children: list[ChildItem],
    ) -> list[SearchDocument]:
        documents = []
        if record is not None:
            documents.append(
                SearchDocument(
                    entity_id=f"issue_{record.subject_id}",
                    entity_type="issue",
                    instance_id=record.instance_id,
                    subject_id=record.subject_id,
                    username=record.extra.get("user"),
                    title=record.title,
                    body=record.extra.get("body"),
                )
            )
        for child in children:
            documents.append(
                SearchDocument(
                    entity_id=f"comment_{child.item_id}",
                    entity_type="comment",
                    instance_id=child.instance_id,
                    subject_id=child.subject_id,
                    item_id=child.item_id,
                    position=child.position,
                    username=child.author,
                    body=child.body,
                )
            )
        return documents
