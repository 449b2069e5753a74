"""
Read side: live tail, full-record fetch, paginated search and stats.

Everything here reads the summary tier through its (app, level_num,
timestamp) and (app, timestamp) indices; only `get_full_log` touches the
full records, one row at a time.
"""
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from logsink import models
from logsink.auth import Caller, caller_app_ids
from logsink.errors import AccessDenied, InvalidRequest, NotFound
from logsink.levels import canonical_level, level_to_rank
from logsink.models import now_ms
from logsink.retention import DAY_MS, HOUR_MS

DEFAULT_TAIL_WINDOW_MS = 5 * 60 * 1000
MAX_TAIL_LIMIT = 1000
MAX_PAGE_SIZE = 500


def _min_rank(min_level: Optional[str]) -> int:
    return level_to_rank(canonical_level(min_level)) if min_level else 0


def tail(db: Session, caller: Caller, app_id: Optional[int] = None,
         since: Optional[int] = None, limit: int = 150, min_level: str = "warn",
         now: Optional[int] = None) -> List[models.LogSummary]:
    app_ids = caller_app_ids(db, caller, app_id)
    if not app_ids:
        return []
    if since is None:
        since = (now if now is not None else now_ms()) - DEFAULT_TAIL_WINDOW_MS
    limit = max(1, min(limit, MAX_TAIL_LIMIT))
    return (db.query(models.LogSummary)
            .filter(models.LogSummary.app_id.in_(app_ids),
                    models.LogSummary.level_num >= _min_rank(min_level),
                    models.LogSummary.timestamp >= since)
            .order_by(models.LogSummary.timestamp.desc(), models.LogSummary.id.desc())
            .limit(limit)
            .all())


def get_full_log(db: Session, caller: Caller, log_id: int) -> models.Log:
    log = db.query(models.Log).filter(models.Log.id == log_id).first()
    if log is None:
        raise NotFound("Log not found")
    app_obj = db.query(models.App).filter(models.App.id == log.app_id).first()
    if app_obj is None or app_obj.owner_id != caller.user_id:
        raise AccessDenied("Log not found or access denied")
    if app_obj.is_deleted:
        raise NotFound("Log not found")
    return log


def encode_cursor(summary: models.LogSummary) -> str:
    return f"{summary.timestamp}:{summary.id}"


def decode_cursor(cursor: str) -> Tuple[int, int]:
    try:
        ts, row_id = cursor.split(":", 1)
        return int(ts), int(row_id)
    except (ValueError, AttributeError):
        raise InvalidRequest("Invalid cursor")


def history(db: Session, caller: Caller, app_id: Optional[int] = None,
            start: Optional[int] = None, end: Optional[int] = None,
            cursor: Optional[str] = None, page_size: int = 100,
            min_level: str = "info", source: Optional[str] = None,
            search: Optional[str] = None, event_type: Optional[str] = None) -> Dict:
    """
    One page of summaries, newest first.

    `start` and `end` bound the timestamp inclusively. `search` matches
    case-insensitively anywhere in the short message, source or request id;
    it is applied inside the same keyset scan as the other filters.

    Pages are keyed on (timestamp, id) so concurrent inserts never shift
    rows between pages. `next_cursor` is None on the last page.
    """
    app_ids = caller_app_ids(db, caller, app_id)
    if not app_ids:
        return {"page": [], "next_cursor": None, "is_done": True}
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    q = db.query(models.LogSummary).filter(
        models.LogSummary.app_id.in_(app_ids),
        models.LogSummary.level_num >= _min_rank(min_level),
    )
    if source:
        q = q.filter(models.LogSummary.source == source)
    if event_type:
        q = q.filter(models.LogSummary.event_type == event_type)
    if start is not None:
        q = q.filter(models.LogSummary.timestamp >= start)
    if end is not None:
        q = q.filter(models.LogSummary.timestamp <= end)
    if search:
        q = q.filter(or_(
            models.LogSummary.message_short.icontains(search, autoescape=True),
            models.LogSummary.source.icontains(search, autoescape=True),
            models.LogSummary.request_id.icontains(search, autoescape=True),
        ))
    if cursor:
        c_ts, c_id = decode_cursor(cursor)
        q = q.filter(or_(
            models.LogSummary.timestamp < c_ts,
            and_(models.LogSummary.timestamp == c_ts, models.LogSummary.id < c_id),
        ))

    rows = (q.order_by(models.LogSummary.timestamp.desc(), models.LogSummary.id.desc())
            .limit(page_size + 1)
            .all())
    page = rows[:page_size]
    is_done = len(rows) <= page_size
    return {
        "page": page,
        "next_cursor": None if is_done else encode_cursor(page[-1]),
        "is_done": is_done,
    }


def get_log_sources(db: Session, caller: Caller, app_id: Optional[int] = None) -> List[str]:
    app_ids = caller_app_ids(db, caller, app_id)
    if not app_ids:
        return []
    rows = (db.query(models.LogSummary.source)
            .filter(models.LogSummary.app_id.in_(app_ids),
                    models.LogSummary.source.isnot(None))
            .distinct()
            .all())
    return sorted(row[0] for row in rows)


def get_log_stats(db: Session, caller: Caller, app_id: Optional[int] = None,
                  now: Optional[int] = None) -> Dict:
    """Exact counts over the retained summaries, plus lifetime ingest totals."""
    app_ids = caller_app_ids(db, caller, app_id)
    stats = {"total": 0, "by_level": {}, "by_app": {}, "recent_count": 0,
             "total_ingested": 0}
    if not app_ids:
        return stats
    now = now if now is not None else now_ms()

    grouped = (db.query(models.LogSummary.app_id, models.LogSummary.level,
                        func.count(models.LogSummary.id))
               .filter(models.LogSummary.app_id.in_(app_ids))
               .group_by(models.LogSummary.app_id, models.LogSummary.level)
               .all())
    for row_app_id, level, count in grouped:
        stats["total"] += count
        stats["by_level"][level] = stats["by_level"].get(level, 0) + count
        stats["by_app"][row_app_id] = stats["by_app"].get(row_app_id, 0) + count

    stats["recent_count"] = (db.query(func.count(models.LogSummary.id))
                             .filter(models.LogSummary.app_id.in_(app_ids),
                                     models.LogSummary.timestamp > now - HOUR_MS)
                             .scalar() or 0)
    stats["total_ingested"] = int(db.query(func.sum(models.App.total_ingested))
                                  .filter(models.App.id.in_(app_ids))
                                  .scalar() or 0)
    return stats


def get_event_types(db: Session, caller: Caller, app_id: Optional[int] = None) -> List[str]:
    app_ids = caller_app_ids(db, caller, app_id)
    if not app_ids:
        return []
    rows = (db.query(models.LogSummary.event_type)
            .filter(models.LogSummary.app_id.in_(app_ids),
                    models.LogSummary.event_type.isnot(None))
            .distinct()
            .all())
    return sorted(row[0] for row in rows)


def get_storage_stats(db: Session, caller: Caller, app_id: Optional[int] = None,
                      now: Optional[int] = None) -> Dict:
    """
    Retained volume by age. The period buckets are disjoint: a log counted
    in `last24h` is not counted again in `last7d`.
    """
    app_ids = caller_app_ids(db, caller, app_id)
    stats = {"total_logs": 0,
             "logs_by_period": {"last24h": 0, "last7d": 0, "last30d": 0, "older": 0},
             "oldest_log_timestamp": None, "newest_log_timestamp": None}
    if not app_ids:
        return stats
    now = now if now is not None else now_ms()

    def count(*criteria) -> int:
        return (db.query(func.count(models.LogSummary.id))
                .filter(models.LogSummary.app_id.in_(app_ids), *criteria)
                .scalar() or 0)

    ts = models.LogSummary.timestamp
    day, week, month = now - DAY_MS, now - 7 * DAY_MS, now - 30 * DAY_MS
    periods = stats["logs_by_period"]
    periods["last24h"] = count(ts > day)
    periods["last7d"] = count(ts > week, ts <= day)
    periods["last30d"] = count(ts > month, ts <= week)
    periods["older"] = count(ts <= month)
    stats["total_logs"] = sum(periods.values())

    oldest, newest = (db.query(func.min(ts), func.max(ts))
                      .filter(models.LogSummary.app_id.in_(app_ids))
                      .one())
    stats["oldest_log_timestamp"] = oldest
    stats["newest_log_timestamp"] = newest
    return stats
