from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from logsink import models, schemas
from logsink.auth import Caller, caller_app_ids, get_caller, get_owned_alert, get_owned_app
from logsink.db import get_db

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


def _apply_condition(alert: models.Alert, condition: schemas.AlertCondition):
    alert.condition_type = condition.type
    alert.threshold = condition.threshold
    alert.time_window = condition.time_window
    alert.function_pattern = condition.function_pattern


@router.post("/", response_model=schemas.AlertRead)
def create_alert(alert_in: schemas.AlertCreate, db: Session = Depends(get_db),
                 caller: Caller = Depends(get_caller)):
    app_obj = get_owned_app(db, alert_in.app_id, caller)
    alert = models.Alert(app_id=app_obj.id, name=alert_in.name,
                         is_active=alert_in.is_active, owner_id=caller.user_id,
                         last_triggered=None, trigger_count=0)
    _apply_condition(alert, alert_in.condition)
    db.add(alert)
    db.commit()
    db.refresh(alert)
    return schemas.AlertRead.from_model(alert)


@router.get("/", response_model=List[schemas.AlertRead])
def list_alerts(app_id: Optional[int] = None, db: Session = Depends(get_db),
                caller: Caller = Depends(get_caller)):
    app_ids = caller_app_ids(db, caller, app_id)
    if not app_ids:
        return []
    alerts = (db.query(models.Alert)
              .filter(models.Alert.app_id.in_(app_ids))
              .order_by(models.Alert.id)
              .all())
    return [schemas.AlertRead.from_model(a) for a in alerts]


@router.get("/history", response_model=List[schemas.AlertRead])
def alert_history(app_id: Optional[int] = None,
                  limit: int = Query(50, ge=1, le=500),
                  db: Session = Depends(get_db),
                  caller: Caller = Depends(get_caller)):
    """Alerts that have fired, most recently triggered first."""
    app_ids = caller_app_ids(db, caller, app_id)
    if not app_ids:
        return []
    alerts = (db.query(models.Alert)
              .filter(models.Alert.app_id.in_(app_ids),
                      models.Alert.last_triggered.isnot(None))
              .order_by(models.Alert.last_triggered.desc())
              .limit(limit)
              .all())
    return [schemas.AlertRead.from_model(a) for a in alerts]


@router.get("/{alert_id}", response_model=schemas.AlertRead)
def get_alert(alert_id: int, db: Session = Depends(get_db),
              caller: Caller = Depends(get_caller)):
    return schemas.AlertRead.from_model(get_owned_alert(db, alert_id, caller))


@router.patch("/{alert_id}", response_model=schemas.AlertRead)
def update_alert(alert_id: int, alert_in: schemas.AlertUpdate,
                 db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    alert = get_owned_alert(db, alert_id, caller)
    if alert_in.name is not None:
        alert.name = alert_in.name
    if alert_in.condition is not None:
        _apply_condition(alert, alert_in.condition)
    if alert_in.is_active is not None:
        alert.is_active = alert_in.is_active
    db.commit()
    db.refresh(alert)
    return schemas.AlertRead.from_model(alert)


@router.delete("/{alert_id}")
def delete_alert(alert_id: int, db: Session = Depends(get_db),
                 caller: Caller = Depends(get_caller)):
    alert = get_owned_alert(db, alert_id, caller)
    db.delete(alert)
    db.commit()
    return {"success": True}
