"""
Pre-aggregated metrics buckets.

Hourly buckets are built from the summary tier, daily buckets from the
hourly ones. Both are write-once per (app, period, start): the aggregator
checks for an existing row before scanning and the table's unique
constraint catches concurrent runs.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from logsink import models
from logsink.ingest.normalizer import FLAG_MARKER
from logsink.models import now_ms
from logsink.retention import DAY_MS, HOUR_MS

logger = logging.getLogger(__name__)

_COUNTED_LEVELS = ("error", "warn", "info", "debug")


@dataclass
class AggregationResult:
    period: str
    period_start: int
    period_end: int
    processed_apps: int = 0
    skipped_apps: int = 0
    failed_apps: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _active_apps(db: Session) -> List[models.App]:
    return (db.query(models.App)
            .filter(models.App.is_active.is_(True), models.App.is_deleted.is_(False))
            .order_by(models.App.id)
            .all())


def _bucket_exists(db: Session, app_id: int, period: str, start: int) -> bool:
    return db.query(models.LogMetric.id).filter(
        models.LogMetric.app_id == app_id,
        models.LogMetric.period == period,
        models.LogMetric.timestamp == start,
    ).first() is not None


def _hour_bucket(db: Session, app_id: int, hour_start: int, hour_end: int) -> models.LogMetric:
    rows = (db.query(models.LogSummary.level, models.LogSummary.message_short)
            .filter(models.LogSummary.app_id == app_id,
                    models.LogSummary.timestamp >= hour_start,
                    models.LogSummary.timestamp < hour_end)
            .all())
    counts = {level: 0 for level in _COUNTED_LEVELS}
    flagged = 0
    for level, message_short in rows:
        if level in counts:
            counts[level] += 1
        if FLAG_MARKER in (message_short or ""):
            flagged += 1
    total = len(rows)
    return models.LogMetric(
        app_id=app_id,
        period="hour",
        timestamp=hour_start,
        total_logs=total,
        error_count=counts["error"],
        warn_count=counts["warn"],
        info_count=counts["info"],
        debug_count=counts["debug"],
        flagged_count=flagged,
        avg_logs_per_minute=round(total / 60, 2),
    )


def _day_bucket(db: Session, app_id: int, day_start: int, day_end: int) -> models.LogMetric:
    hours = (db.query(models.LogMetric)
             .filter(models.LogMetric.app_id == app_id,
                     models.LogMetric.period == "hour",
                     models.LogMetric.timestamp >= day_start,
                     models.LogMetric.timestamp < day_end)
             .all())
    total = sum(h.total_logs for h in hours)
    return models.LogMetric(
        app_id=app_id,
        period="day",
        timestamp=day_start,
        total_logs=total,
        error_count=sum(h.error_count for h in hours),
        warn_count=sum(h.warn_count for h in hours),
        info_count=sum(h.info_count for h in hours),
        debug_count=sum(h.debug_count for h in hours),
        flagged_count=sum(h.flagged_count for h in hours),
        avg_logs_per_minute=round(total / (24 * 60), 2),
    )


def _aggregate(db: Session, period: str, start: int, end: int, build) -> AggregationResult:
    result = AggregationResult(period=period, period_start=start, period_end=end)
    for app_obj in _active_apps(db):
        app_id, app_name = app_obj.id, app_obj.name
        try:
            if _bucket_exists(db, app_id, period, start):
                result.skipped_apps += 1
                continue
            bucket = build(db, app_id, start, end)
            db.add(bucket)
            db.commit()
            result.processed_apps += 1
            logger.debug("Aggregated %s metrics for %s: %d logs, %d errors",
                         period, app_name, bucket.total_logs, bucket.error_count)
        except IntegrityError:
            # another run inserted the bucket between our check and insert
            db.rollback()
            result.skipped_apps += 1
        except Exception:
            db.rollback()
            result.failed_apps += 1
            logger.exception("Failed to aggregate %s metrics for app %s", period, app_id)

    logger.info("Aggregated %s metrics at %s: %d processed, %d skipped, %d failed",
                period, _iso(start), result.processed_apps, result.skipped_apps,
                result.failed_apps)
    return result


def aggregate_hourly_metrics(db: Session, target_hour: Optional[int] = None,
                             now: Optional[int] = None) -> AggregationResult:
    """Build hour buckets for the hour containing `target_hour` (default: last hour)."""
    now = now if now is not None else now_ms()
    target = target_hour if target_hour is not None else now - HOUR_MS
    hour_start = (target // HOUR_MS) * HOUR_MS
    return _aggregate(db, "hour", hour_start, hour_start + HOUR_MS, _hour_bucket)


def aggregate_daily_metrics(db: Session, target_day: Optional[int] = None,
                            now: Optional[int] = None) -> AggregationResult:
    """Roll a day's hour buckets into one day bucket (default: yesterday)."""
    now = now if now is not None else now_ms()
    target = target_day if target_day is not None else now - DAY_MS
    day_start = (target // DAY_MS) * DAY_MS
    return _aggregate(db, "day", day_start, day_start + DAY_MS, _day_bucket)


def trigger_metrics_aggregation(db: Session, hours_back: int = 1,
                                now: Optional[int] = None) -> List[AggregationResult]:
    """Aggregate the last `hours_back` complete hours, most recent first."""
    now = now if now is not None else now_ms()
    return [aggregate_hourly_metrics(db, target_hour=now - i * HOUR_MS, now=now)
            for i in range(1, max(hours_back, 1) + 1)]


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat()


def _error_rate(total: int, errors: int) -> int:
    return round(errors / total * 100) if total > 0 else 0


def _chart_point(timestamp: int, counts: Dict) -> Dict:
    dt = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    return {
        "timestamp": timestamp,
        "hour": dt.hour,
        "label": dt.strftime("%I %p").lstrip("0"),
        **counts,
        "error_rate": _error_rate(counts["total_logs"], counts["error_count"]),
    }


def _counts(metric: models.LogMetric) -> Dict:
    return {
        "total_logs": metric.total_logs,
        "error_count": metric.error_count,
        "warn_count": metric.warn_count,
        "info_count": metric.info_count,
        "debug_count": metric.debug_count,
        "flagged_count": metric.flagged_count,
        "avg_logs_per_minute": metric.avg_logs_per_minute,
    }


def get_app_chart_data(db: Session, app_id: int, hours: int = 24,
                       period: str = "hour", now: Optional[int] = None) -> List[Dict]:
    now = now if now is not None else now_ms()
    since = now - hours * HOUR_MS
    metrics = (db.query(models.LogMetric)
               .filter(models.LogMetric.app_id == app_id,
                       models.LogMetric.period == period,
                       models.LogMetric.timestamp >= since)
               .order_by(models.LogMetric.timestamp.asc())
               .all())
    return [_chart_point(m.timestamp, _counts(m)) for m in metrics]


def get_all_apps_chart_data(db: Session, app_ids: List[int], hours: int = 24,
                            now: Optional[int] = None) -> List[Dict]:
    """Sum hourly buckets across several apps, one point per hour."""
    if not app_ids:
        return []
    now = now if now is not None else now_ms()
    since = now - hours * HOUR_MS
    metrics = (db.query(models.LogMetric)
               .filter(models.LogMetric.timestamp >= since,
                       models.LogMetric.period == "hour",
                       models.LogMetric.app_id.in_(app_ids))
               .all())
    merged: Dict[int, Dict] = {}
    for metric in metrics:
        counts = merged.setdefault(metric.timestamp, {
            "total_logs": 0, "error_count": 0, "warn_count": 0, "info_count": 0,
            "debug_count": 0, "flagged_count": 0, "avg_logs_per_minute": 0.0,
        })
        for key, value in _counts(metric).items():
            counts[key] += value
    return [_chart_point(ts, counts) for ts, counts in sorted(merged.items())]
