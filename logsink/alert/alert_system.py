import logging
from dataclasses import asdict, dataclass
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from logsink import db as database
from logsink import models
from logsink.levels import LEVEL_RANKS
from logsink.models import now_ms

logger = logging.getLogger(__name__)

CONDITION_TYPES = ("error_count", "error_rate", "function_duration", "no_logs")
# newest matching full records read per function_duration check
DURATION_SCAN_LIMIT = 500


@dataclass
class AlertFiring:
    alert_id: int
    app_id: int
    name: str
    condition_type: str
    threshold: float
    time_window: int
    log_count: int
    error_count: int
    triggered_at: int

    def to_dict(self) -> dict:
        return asdict(self)


def send_alert(firing: AlertFiring):
    """
    Reports a firing. Delivery to email/Slack/etc. lives outside this
    service; here the firing is only logged.
    """
    logger.warning(
        "ALERT '%s' (app %s): %s threshold %s hit, %d logs / %d errors in last %d min",
        firing.name, firing.app_id, firing.condition_type, firing.threshold,
        firing.log_count, firing.error_count, firing.time_window)


def _window_counts(db: Session, app_id: int, start: int):
    """(total, errors) in the window, read from the summary tier."""
    base = db.query(func.count(models.LogSummary.id)).filter(
        models.LogSummary.app_id == app_id,
        models.LogSummary.timestamp >= start,
    )
    total = base.scalar() or 0
    errors = base.filter(models.LogSummary.level_num >= LEVEL_RANKS["error"]).scalar() or 0
    return total, errors


def _has_slow_function(db: Session, alert: models.Alert, start: int) -> bool:
    # durations only live in the full record's metadata
    rows = (db.query(models.Log.metadata_)
            .filter(models.Log.app_id == alert.app_id,
                    models.Log.timestamp >= start,
                    models.Log.source.contains(alert.function_pattern, autoescape=True))
            .order_by(models.Log.timestamp.desc())
            .limit(DURATION_SCAN_LIMIT)
            .all())
    for (metadata,) in rows:
        duration = (metadata or {}).get("duration")
        if isinstance(duration, (int, float)) and not isinstance(duration, bool) \
                and duration >= alert.threshold:
            return True
    return False


def should_trigger(db: Session, alert: models.Alert, log_count: int, error_count: int,
                   start: int) -> bool:
    kind = alert.condition_type
    if kind == "error_count":
        return error_count >= alert.threshold
    if kind == "error_rate":
        if log_count == 0:
            return False
        return (error_count / log_count) * 100 >= alert.threshold
    if kind == "function_duration":
        if not alert.function_pattern:
            return False
        return _has_slow_function(db, alert, start)
    if kind == "no_logs":
        return log_count == 0
    logger.warning("Alert %s has unknown condition type %r", alert.id, kind)
    return False


def _active_alerts(db: Session) -> List[models.Alert]:
    return (db.query(models.Alert)
            .join(models.App, models.App.id == models.Alert.app_id)
            .filter(models.Alert.is_active.is_(True), models.App.is_deleted.is_(False))
            .order_by(models.Alert.id)
            .all())


def evaluate_alerts(db: Session, now: Optional[int] = None) -> List[AlertFiring]:
    """
    Evaluate every active alert rule once.

    A rule that fires gets last_triggered = now and trigger_count + 1 in a
    single UPDATE. A failure on one rule is logged and does not stop the
    remaining rules.
    """
    now = now if now is not None else now_ms()
    firings: List[AlertFiring] = []

    for alert in _active_alerts(db):
        alert_id = alert.id
        try:
            start = now - alert.time_window * 60 * 1000
            log_count, error_count = _window_counts(db, alert.app_id, start)
            if not should_trigger(db, alert, log_count, error_count, start):
                continue

            (db.query(models.Alert)
             .filter(models.Alert.id == alert_id)
             .update({models.Alert.last_triggered: now,
                      models.Alert.trigger_count: models.Alert.trigger_count + 1},
                     synchronize_session=False))
            db.commit()
            firings.append(AlertFiring(
                alert_id=alert_id,
                app_id=alert.app_id,
                name=alert.name,
                condition_type=alert.condition_type,
                threshold=alert.threshold,
                time_window=alert.time_window,
                log_count=log_count,
                error_count=error_count,
                triggered_at=now,
            ))
        except Exception:
            db.rollback()
            logger.exception("[Alert System Error] evaluating alert %s", alert_id)

    return firings


def check_alerts(now: Optional[int] = None) -> List[AlertFiring]:
    """Scheduled entry point: evaluate all rules and report firings."""
    session = database.SessionLocal()
    try:
        firings = evaluate_alerts(session, now=now)
    finally:
        session.close()
    for firing in firings:
        send_alert(firing)
    logger.info("Alert check complete: %d fired", len(firings))
    return firings
