import logging
from dataclasses import asdict, dataclass
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from logsink import models
from logsink.config import config
from logsink.levels import LEVEL_RANKS
from logsink.models import now_ms
from logsink.store import delete_paired

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


@dataclass
class CleanupResult:
    deleted_logs: int = 0
    deleted_normal: int = 0
    deleted_error: int = 0
    deleted_summaries: int = 0
    deleted_orphans: int = 0
    has_more: bool = False

    @property
    def deleted_count(self) -> int:
        return self.deleted_logs + self.deleted_orphans

    def to_dict(self) -> dict:
        data = asdict(self)
        data["deleted_count"] = self.deleted_count
        return data


@dataclass
class MetricsCleanupResult:
    deleted_count: int = 0
    has_more: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def _old_log_ids(db: Session, errors: bool, cutoff: int, batch_size: int,
                 app_ids: Optional[List[int]]) -> List[int]:
    q = db.query(models.Log.id).filter(models.Log.timestamp < cutoff)
    if errors:
        q = q.filter(models.Log.level == "error")
    else:
        q = q.filter(models.Log.level != "error")
    if app_ids is not None:
        q = q.filter(models.Log.app_id.in_(app_ids))
    return [row[0] for row in q.order_by(models.Log.timestamp).limit(batch_size)]


def _orphan_summary_ids(db: Session, normal_cutoff: int, error_cutoff: int,
                        batch_size: int, app_ids: Optional[List[int]]) -> List[int]:
    """Expired summaries whose full record is already gone."""
    error_rank = LEVEL_RANKS["error"]
    q = (db.query(models.LogSummary.id)
         .outerjoin(models.Log, models.Log.id == models.LogSummary.log_id)
         .filter(models.Log.id.is_(None))
         .filter(or_(
             and_(models.LogSummary.level_num < error_rank,
                  models.LogSummary.timestamp < normal_cutoff),
             and_(models.LogSummary.level_num >= error_rank,
                  models.LogSummary.timestamp < error_cutoff),
         )))
    if app_ids is not None:
        q = q.filter(models.LogSummary.app_id.in_(app_ids))
    return [row[0] for row in q.limit(batch_size)]


def cleanup_old_logs(db: Session, now: Optional[int] = None,
                     normal_hours: Optional[int] = None,
                     error_days: Optional[int] = None,
                     batch_size: Optional[int] = None,
                     app_ids: Optional[List[int]] = None) -> CleanupResult:
    """
    Delete one bounded batch of expired logs.

    Non-error logs expire after `normal_hours`, error logs after `error_days`.
    At most `batch_size` rows per category are removed per call; `has_more`
    tells the caller whether another call would find more work.
    """
    now = now if now is not None else now_ms()
    normal_hours = normal_hours or config.RETENTION_NORMAL_HOURS
    error_days = error_days or config.RETENTION_ERROR_DAYS
    batch_size = batch_size or config.RETENTION_BATCH_SIZE
    normal_cutoff = now - normal_hours * HOUR_MS
    error_cutoff = now - error_days * DAY_MS

    result = CleanupResult()

    for errors, cutoff in ((False, normal_cutoff), (True, error_cutoff)):
        try:
            ids = _old_log_ids(db, errors, cutoff, batch_size, app_ids)
            logs, summaries = delete_paired(db, ids)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Retention sweep failed for %s logs",
                             "error" if errors else "non-error")
            continue
        if errors:
            result.deleted_error = logs
        else:
            result.deleted_normal = logs
        result.deleted_logs += logs
        result.deleted_summaries += summaries
        if len(ids) >= batch_size:
            result.has_more = True

    try:
        orphan_ids = _orphan_summary_ids(db, normal_cutoff, error_cutoff,
                                         batch_size, app_ids)
        if orphan_ids:
            result.deleted_orphans = (db.query(models.LogSummary)
                                      .filter(models.LogSummary.id.in_(orphan_ids))
                                      .delete(synchronize_session=False))
            result.deleted_summaries += result.deleted_orphans
        db.commit()
        if len(orphan_ids) >= batch_size:
            result.has_more = True
    except Exception:
        db.rollback()
        logger.exception("Retention sweep failed for dangling summaries")

    logger.info("Retention sweep deleted %d logs (%d normal, %d error), "
                "%d summaries (%d dangling), has_more=%s",
                result.deleted_logs, result.deleted_normal, result.deleted_error,
                result.deleted_summaries, result.deleted_orphans, result.has_more)
    return result


def cleanup_old_metrics(db: Session, now: Optional[int] = None,
                        retention_days: Optional[int] = None,
                        batch_size: Optional[int] = None) -> MetricsCleanupResult:
    now = now if now is not None else now_ms()
    retention_days = retention_days or config.METRICS_RETENTION_DAYS
    batch_size = batch_size or config.METRICS_CLEANUP_BATCH_SIZE
    cutoff = now - retention_days * DAY_MS

    ids = [row[0] for row in (db.query(models.LogMetric.id)
                              .filter(models.LogMetric.timestamp < cutoff)
                              .order_by(models.LogMetric.timestamp)
                              .limit(batch_size))]
    deleted = 0
    if ids:
        deleted = (db.query(models.LogMetric)
                   .filter(models.LogMetric.id.in_(ids))
                   .delete(synchronize_session=False))
    db.commit()
    logger.info("Metrics cleanup deleted %d buckets older than %d days",
                deleted, retention_days)
    return MetricsCleanupResult(deleted_count=deleted,
                                has_more=len(ids) >= batch_size)
