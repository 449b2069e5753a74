"""
Access patterns for the two log tiers.

Every full record in ``logs`` has exactly one projection in
``log_summaries``. Writes go through ``insert_paired`` (full row flushed
first, then the summary, both in the caller's transaction) and deletes go
through ``delete_paired`` / ``delete_app_logs`` so the tiers stay in step.
"""
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from logsink import models
from logsink.config import config
from logsink.ingest.events import GenericMetadata, NormalizedLog, metadata_to_record
from logsink.levels import level_to_rank


EVENT_TYPE_LENGTH = 50


def event_type_of(metadata) -> Optional[str]:
    """The filterable event type: the metadata kind, or a generic event's own type."""
    if metadata is None:
        return None
    if isinstance(metadata, GenericMetadata):
        event_type = metadata.event.get("event_type") or metadata.event.get("topic")
        if not isinstance(event_type, str) or not event_type:
            return metadata.kind
        return event_type[:EVENT_TYPE_LENGTH]
    return metadata.kind


def summarize(log: models.Log, short_length: int = None,
              event_type: Optional[str] = None) -> models.LogSummary:
    """Build the summary row for a flushed full log."""
    short_length = short_length or config.MESSAGE_SHORT_LENGTH
    return models.LogSummary(
        app_id=log.app_id,
        timestamp=log.timestamp,
        level=log.level,
        level_num=level_to_rank(log.level),
        message_short=(log.message or "")[:short_length],
        source=log.source,
        request_id=log.request_id,
        has_metadata=bool(log.metadata_),
        event_type=event_type,
        log_id=log.id,
    )


def insert_paired(db: Session, record: NormalizedLog) -> Tuple[models.Log, models.LogSummary]:
    log = models.Log(
        app_id=record.app_id,
        timestamp=record.timestamp,
        level=record.level,
        message=record.message,
        source=record.source,
        request_id=record.request_id,
        user_id=record.user_id,
        metadata_=metadata_to_record(record.metadata),
        raw_data=record.raw_data,
    )
    db.add(log)
    # the summary needs the full row's id
    db.flush()
    summary = summarize(log, event_type=event_type_of(record.metadata))
    db.add(summary)
    db.flush()
    return log, summary


def delete_paired(db: Session, log_ids: Iterable[int]) -> Tuple[int, int]:
    """Delete full logs and their summaries. Returns (logs, summaries) deleted."""
    log_ids = list(log_ids)
    if not log_ids:
        return 0, 0
    summaries = (db.query(models.LogSummary)
                 .filter(models.LogSummary.log_id.in_(log_ids))
                 .delete(synchronize_session=False))
    logs = (db.query(models.Log)
            .filter(models.Log.id.in_(log_ids))
            .delete(synchronize_session=False))
    return logs, summaries


def delete_app_logs(db: Session, app_ids: List[int]) -> Tuple[int, int]:
    if not app_ids:
        return 0, 0
    summaries = (db.query(models.LogSummary)
                 .filter(models.LogSummary.app_id.in_(app_ids))
                 .delete(synchronize_session=False))
    logs = (db.query(models.Log)
            .filter(models.Log.app_id.in_(app_ids))
            .delete(synchronize_session=False))
    return logs, summaries
