"""Decide whether a remote subject has changed enough to re-fetch it."""

from datetime import datetime, timezone

from mirror_indexer.ingestion.schemas import LocalRecord, RemoteSummary

_EPOCH_MIN = datetime.min.replace(tzinfo=timezone.utc)


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return _EPOCH_MIN
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def needs_refetch(
    local: LocalRecord | None,
    remote: RemoteSummary,
    local_child_count: int = 0,
) -> bool:
    """
    Compare a fresh remote summary against the stored record.

    A subject is stale when it has never been stored, when its item count
    differs, when the remote side saw activity after the stored timestamp,
    or when fewer items are stored locally than the remote reports.
    A missing timestamp on either side counts as the earliest possible time.

    Args:
        local: Stored record, or None if the subject was never stored
        remote: Summary from the listing or the first detail page
        local_child_count: Items currently stored for the subject
    """
    if local is None:
        return True

    if local.item_count != remote.item_count:
        return True

    if _as_utc(local.last_activity_at) < _as_utc(remote.last_activity_at):
        return True

    return local_child_count < remote.item_count
