"""
Source instance configuration.

Instances come from the SOURCE_INSTANCES setting as a JSON list, e.g.:

    [
        {"instance_id": "research", "kind": "discourse",
         "base_url": "https://ethresear.ch", "poll_interval": "30m"},
        {"instance_id": "pm", "kind": "github", "repository": "ethereum/pm",
         "poll_interval": "5m"}
    ]

When the setting is empty the built-in defaults below are used.
"""

import re
from datetime import timedelta

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from mirror_indexer.ingestion.github_source import DEFAULT_API_URL
from mirror_indexer.ingestion.schemas import SourceInstance, SourceKind

# Forum listings are sorted by last activity, so one page per tick catches up
DEFAULT_DISCOURSE_LATEST_PAGES = 1

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

# Topic and post ids are only unique per forum, so each default forum gets its
# own search index; ids like "topic_42" would otherwise collide
DEFAULT_INSTANCES: list[SourceInstance] = [
    SourceInstance(
        instance_id="magicians",
        kind=SourceKind.DISCOURSE,
        base_url="https://ethereum-magicians.org",
        poll_interval=timedelta(minutes=30),
        latest_pages=DEFAULT_DISCOURSE_LATEST_PAGES,
        search_index="magicians",
    ),
    SourceInstance(
        instance_id="research",
        kind=SourceKind.DISCOURSE,
        base_url="https://ethresear.ch",
        poll_interval=timedelta(minutes=30),
        latest_pages=DEFAULT_DISCOURSE_LATEST_PAGES,
        search_index="research",
    ),
    SourceInstance(
        instance_id="pm",
        kind=SourceKind.GITHUB,
        base_url=DEFAULT_API_URL,
        poll_interval=timedelta(minutes=5),
        repository="ethereum/pm",
    ),
]


def parse_duration(value: str | int | float | timedelta) -> timedelta:
    """
    Parse a duration such as "30m", "5m", "1h", "45s" or a number of seconds.

    Raises:
        ValueError: If the value is not a positive duration
    """
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, (int, float)):
        duration = timedelta(seconds=value)
    else:
        match = _DURATION_RE.match(value)
        if not match:
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = match.groups()
        duration = timedelta(seconds=float(amount) * _DURATION_UNITS[unit])

    if duration <= timedelta(0):
        raise ValueError(f"Duration must be positive: {value!r}")
    return duration


class InstanceConfig(BaseModel):
    """One entry of the SOURCE_INSTANCES list."""

    model_config = ConfigDict(extra="forbid")

    instance_id: str = Field(min_length=1)
    kind: SourceKind
    base_url: str | None = None
    poll_interval: timedelta
    repository: str | None = None
    latest_pages: int | None = Field(default=None, ge=1)
    search_index: str | None = None

    @field_validator("poll_interval", mode="before")
    @classmethod
    def _parse_interval(cls, value: str | int | float | timedelta) -> timedelta:
        return parse_duration(value)

    def to_instance(self) -> SourceInstance:
        base_url = self.base_url
        if base_url is None:
            if self.kind != SourceKind.GITHUB:
                raise ValueError(f"Instance '{self.instance_id}' needs a base_url")
            base_url = DEFAULT_API_URL

        if self.kind == SourceKind.GITHUB and not self.repository:
            raise ValueError(f"GitHub instance '{self.instance_id}' needs a repository")

        latest_pages = self.latest_pages
        if "latest_pages" not in self.model_fields_set and self.kind == SourceKind.DISCOURSE:
            latest_pages = DEFAULT_DISCOURSE_LATEST_PAGES

        return SourceInstance(
            instance_id=self.instance_id,
            kind=self.kind,
            base_url=base_url,
            poll_interval=self.poll_interval,
            repository=self.repository,
            latest_pages=latest_pages,
            search_index=self.search_index,
        )


def load_instances(raw: str | None) -> list[SourceInstance]:
    """
    Build source instances from the SOURCE_INSTANCES JSON value.

    Args:
        raw: JSON list of instance objects, or None/empty for the defaults

    Raises:
        ValueError: On malformed JSON, invalid entries or duplicate ids
    """
    if not raw or not raw.strip():
        return list(DEFAULT_INSTANCES)

    try:
        configs = TypeAdapter(list[InstanceConfig]).validate_json(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid SOURCE_INSTANCES: {e}") from e

    instances = [config.to_instance() for config in configs]

    seen: set[str] = set()
    for instance in instances:
        if instance.instance_id in seen:
            raise ValueError(f"Duplicate instance_id: {instance.instance_id}")
        seen.add(instance.instance_id)

    return instances
