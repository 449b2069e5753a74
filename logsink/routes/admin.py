import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from logsink import models, schemas
from logsink.alert.alert_system import evaluate_alerts, send_alert
from logsink.auth import ADMIN, Caller, require_capability
from logsink.config import config
from logsink.db import get_db
from logsink.errors import ConfirmationMismatch
from logsink.metrics import aggregate_daily_metrics, trigger_metrics_aggregation
from logsink.retention import cleanup_old_logs, cleanup_old_metrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

require_admin = require_capability(ADMIN)


@router.post("/wipe", response_model=schemas.WipeResponse)
def wipe_all_logs(body: schemas.WipeRequest, db: Session = Depends(get_db),
                  caller: Caller = Depends(require_admin)):
    if body.confirmation_code != config.WIPE_CONFIRMATION_CODE:
        raise ConfirmationMismatch()
    summaries = db.query(models.LogSummary).delete(synchronize_session=False)
    logs = db.query(models.Log).delete(synchronize_session=False)
    metrics = db.query(models.LogMetric).delete(synchronize_session=False)
    db.commit()
    logger.warning("%s wiped all logs: %d logs, %d summaries, %d metrics",
                   caller.user_id, logs, summaries, metrics)
    return {"deleted_logs": logs, "deleted_summaries": summaries,
            "deleted_metrics": metrics}


@router.get("/stats")
def system_stats(db: Session = Depends(get_db),
                 caller: Caller = Depends(require_admin)):
    """System-wide counts from indexed COUNTs and the per-app ingest counters."""
    by_level = dict(
        db.query(models.LogSummary.level, func.count(models.LogSummary.id))
          .group_by(models.LogSummary.level)
          .all()
    )
    return {
        "total_apps": db.query(func.count(models.App.id)).scalar() or 0,
        "active_apps": db.query(func.count(models.App.id))
                         .filter(models.App.is_active.is_(True),
                                 models.App.is_deleted.is_(False)).scalar() or 0,
        "retained_logs": sum(by_level.values()),
        "by_level": by_level,
        "total_ingested": int(db.query(func.sum(models.App.total_ingested)).scalar() or 0),
        "metric_buckets": db.query(func.count(models.LogMetric.id)).scalar() or 0,
    }


@router.post("/jobs/check-alerts")
def run_alert_check(db: Session = Depends(get_db),
                    caller: Caller = Depends(require_admin)):
    firings = evaluate_alerts(db)
    for firing in firings:
        send_alert(firing)
    return {"fired": [f.to_dict() for f in firings]}


@router.post("/jobs/cleanup-logs", response_model=schemas.CleanupResponse)
def run_log_cleanup(body: Optional[schemas.CleanupRequest] = None,
                    db: Session = Depends(get_db),
                    caller: Caller = Depends(require_admin)):
    body = body or schemas.CleanupRequest()
    return cleanup_old_logs(db, normal_hours=body.normal_hours,
                            error_days=body.error_days).to_dict()


@router.post("/jobs/aggregate-metrics")
def run_metrics_aggregation(hours_back: int = Query(1, ge=1, le=168),
                            db: Session = Depends(get_db),
                            caller: Caller = Depends(require_admin)):
    return [r.to_dict() for r in trigger_metrics_aggregation(db, hours_back=hours_back)]


@router.post("/jobs/aggregate-daily")
def run_daily_rollup(db: Session = Depends(get_db),
                     caller: Caller = Depends(require_admin)):
    return aggregate_daily_metrics(db).to_dict()


@router.post("/jobs/cleanup-metrics")
def run_metrics_cleanup(retention_days: Optional[int] = Query(None, ge=1),
                        db: Session = Depends(get_db),
                        caller: Caller = Depends(require_admin)):
    return cleanup_old_metrics(db, retention_days=retention_days).to_dict()
