"""
Discourse forum adapter.

Listing chain: /latest.json, continued via topic_list.more_topics_url.
Detail chain:  /t/{topic_id}.json?page={n}, 20 posts per page.

Posts arrive as "cooked" HTML; the stored body keeps the HTML while the
search projection gets plain text.
"""

import logging
from datetime import datetime

from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict, Field

from mirror_indexer.errors import TransportError
from mirror_indexer.ingestion.base_source import PaginatedSource
from mirror_indexer.ingestion.schemas import (
    ChildItem,
    ListingPage,
    LocalRecord,
    RemoteSummary,
    SearchDocument,
    SourceKind,
    SubjectPage,
)

logger = logging.getLogger(__name__)


class _DiscourseModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DiscourseListedTopic(_DiscourseModel):
    id: int
    title: str = ""
    slug: str | None = None
    posts_count: int = 0
    last_posted_at: datetime | None = None


class DiscourseTopicList(_DiscourseModel):
    topics: list[DiscourseListedTopic] = Field(default_factory=list)
    more_topics_url: str | None = None


class DiscourseLatestResponse(_DiscourseModel):
    topic_list: DiscourseTopicList


class DiscoursePost(_DiscourseModel):
    id: int
    topic_id: int
    post_number: int
    username: str | None = None
    user_id: int | None = None
    cooked: str | None = None
    post_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DiscoursePostStream(_DiscourseModel):
    posts: list[DiscoursePost] = Field(default_factory=list)


class DiscourseTopicResponse(_DiscourseModel):
    id: int
    title: str
    slug: str | None = None
    posts_count: int = 0
    views: int | None = None
    like_count: int | None = None
    image_url: str | None = None
    closed: bool = False
    archived: bool = False
    created_at: datetime | None = None
    last_posted_at: datetime | None = None
    bumped_at: datetime | None = None
    post_stream: DiscoursePostStream = Field(default_factory=DiscoursePostStream)


def strip_html(cooked: str | None) -> str | None:
    """Reduce cooked post HTML to whitespace-normalized text."""
    if not cooked:
        return None
    text = BeautifulSoup(cooked, "html.parser").get_text(" ")
    return " ".join(text.split())


class DiscourseSource(PaginatedSource):
    """
    Adapter for one Discourse deployment.

    Usage:
        source = DiscourseSource(instance, http_client, search_index="forum")
        listing = await source.fetch_listing()
        page = await source.fetch_subject_page(listing.subjects[0].remote_id, 1)
    """

    @property
    def kind(self) -> SourceKind:
        return SourceKind.DISCOURSE

    def listing_url(self, cursor: str | None) -> str:
        """
        Resolve a listing cursor into a JSON URL.

        Discourse returns continuations as HTML routes ("/latest?page=1");
        those are rewritten to the JSON route.
        """
        if not cursor:
            return f"{self.base_url}/latest.json"
        if cursor.startswith("/latest?"):
            return f"{self.base_url}/latest.json?{cursor[len('/latest?'):]}"
        if cursor.startswith("/latest"):
            return f"{self.base_url}/latest.json"
        if cursor.startswith("http://") or cursor.startswith("https://"):
            return cursor
        return f"{self.base_url}{cursor}"

    async def fetch_listing(self, cursor: str | None = None) -> ListingPage:
        url = self.listing_url(cursor)
        logger.debug(f"Fetching listing {url}")
        response = await self._get_model(url, DiscourseLatestResponse)

        return ListingPage(
            subjects=[
                RemoteSummary(
                    remote_id=topic.id,
                    item_count=topic.posts_count,
                    last_activity_at=topic.last_posted_at,
                    title=topic.title,
                )
                for topic in response.topic_list.topics
            ],
            next_cursor=response.topic_list.more_topics_url,
        )

    async def fetch_subject_page(self, subject_id: int, page: int) -> SubjectPage:
        url = f"{self.base_url}/t/{subject_id}.json"
        try:
            topic = await self._get_model(url, DiscourseTopicResponse, params={"page": page})
        except TransportError as e:
            # Discourse answers 404 for pages past the last post
            if page > 1 and e.status_code == 404:
                return SubjectPage.exhausted(subject_id)
            raise

        return SubjectPage(
            summary=RemoteSummary(
                remote_id=topic.id,
                item_count=topic.posts_count,
                last_activity_at=topic.last_posted_at,
                title=topic.title,
            ),
            record=self._to_record(topic),
            children=[self._to_child(topic.id, post) for post in topic.post_stream.posts],
        )

    def _to_record(self, topic: DiscourseTopicResponse) -> LocalRecord:
        if topic.archived:
            state = "archived"
        elif topic.closed:
            state = "closed"
        else:
            state = "open"

        return LocalRecord(
            instance_id=self.instance.instance_id,
            subject_id=topic.id,
            kind=self.kind,
            title=topic.title,
            slug=topic.slug,
            state=state,
            item_count=topic.posts_count,
            last_activity_at=topic.last_posted_at,
            created_at=topic.created_at,
            extra={
                "views": topic.views,
                "like_count": topic.like_count,
                "image_url": topic.image_url,
                "bumped_at": topic.bumped_at.isoformat() if topic.bumped_at else None,
            },
        )

    def _to_child(self, topic_id: int, post: DiscoursePost) -> ChildItem:
        return ChildItem(
            instance_id=self.instance.instance_id,
            subject_id=topic_id,
            item_id=post.id,
            position=post.post_number,
            author=post.username,
            body=post.cooked,
            created_at=post.created_at,
            updated_at=post.updated_at,
            extra={"user_id": post.user_id, "post_url": post.post_url},
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
                    entity_id=f"topic_{record.subject_id}",
                    entity_type="topic",
                    instance_id=record.instance_id,
                    subject_id=record.subject_id,
                    title=record.title,
                    slug=record.slug,
                )
            )
        for child in children:
            documents.append(
                SearchDocument(
                    entity_id=f"post_{child.item_id}",
                    entity_type="post",
                    instance_id=child.instance_id,
                    subject_id=child.subject_id,
                    item_id=child.item_id,
                    position=child.position,
                    username=child.author,
                    body=strip_html(child.body),
                )
            )
        return documents
