import json
import logging
import secrets
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from logsink import models, schemas
from logsink.auth import Caller, get_caller, get_owned_app
from logsink.db import get_db
from logsink.errors import ConfirmationMismatch, InvalidRequest, NotFound
from logsink.ingest.events import GenericMetadata, NormalizedLog
from logsink.models import now_ms
from logsink.store import delete_app_logs, insert_paired

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/apps", tags=["apps"])


def generate_api_key() -> str:
    return f"app_{secrets.token_urlsafe(24)}"


def _ensure_unique_name(db: Session, caller: Caller, name: str, exclude_id: int = None):
    q = db.query(models.App).filter(models.App.owner_id == caller.user_id,
                                    models.App.name == name,
                                    models.App.is_deleted.is_(False))
    if exclude_id is not None:
        q = q.filter(models.App.id != exclude_id)
    if q.first():
        raise InvalidRequest("App with this name already exists")


@router.post("/", response_model=schemas.AppRead)
def create_app(app_in: schemas.AppCreate, db: Session = Depends(get_db),
               caller: Caller = Depends(get_caller)):
    _ensure_unique_name(db, caller, app_in.name)
    db_app = models.App(name=app_in.name, description=app_in.description,
                        api_key=generate_api_key(), is_active=True,
                        owner_id=caller.user_id, is_deleted=False, total_ingested=0)
    db.add(db_app)
    db.commit()
    db.refresh(db_app)
    logger.info("Created app %s for %s", db_app.id, caller.user_id)
    return db_app


@router.get("/", response_model=List[schemas.AppRead])
def list_apps(include_deleted: bool = False, db: Session = Depends(get_db),
              caller: Caller = Depends(get_caller)):
    query = db.query(models.App).filter(models.App.owner_id == caller.user_id)
    if not include_deleted:
        query = query.filter(models.App.is_deleted.is_(False))
    return query.order_by(models.App.id).all()


@router.get("/{app_id}", response_model=schemas.AppRead)
def get_app(app_id: int, db: Session = Depends(get_db),
            caller: Caller = Depends(get_caller)):
    return get_owned_app(db, app_id, caller, include_deleted=True)


@router.patch("/{app_id}", response_model=schemas.AppRead)
def update_app(app_id: int, app_in: schemas.AppUpdate, db: Session = Depends(get_db),
               caller: Caller = Depends(get_caller)):
    app_obj = get_owned_app(db, app_id, caller)
    if app_in.name is not None:
        _ensure_unique_name(db, caller, app_in.name, exclude_id=app_id)
        app_obj.name = app_in.name
    if app_in.description is not None:
        app_obj.description = app_in.description
    if app_in.is_active is not None:
        app_obj.is_active = app_in.is_active
    db.commit()
    db.refresh(app_obj)
    return app_obj


@router.post("/{app_id}/rotate-key", response_model=schemas.AppRead)
def rotate_api_key(app_id: int, db: Session = Depends(get_db),
                   caller: Caller = Depends(get_caller)):
    app_obj = get_owned_app(db, app_id, caller)
    app_obj.api_key = generate_api_key()
    db.commit()
    db.refresh(app_obj)
    logger.info("Rotated API key for app %s", app_id)
    return app_obj


@router.delete("/{app_id}")
def delete_app(app_id: int, db: Session = Depends(get_db),
               caller: Caller = Depends(get_caller)):
    """
    Soft delete: the app is flagged deleted and deactivated, its logs stay
    in place but every read path filters them out until restore or purge.
    """
    app_obj = get_owned_app(db, app_id, caller)
    deleted_at = now_ms()
    backup = {"id": app_obj.id, "name": app_obj.name,
              "description": app_obj.description, "is_active": app_obj.is_active,
              "flags": [{"pattern": f.pattern, "name": f.name, "is_active": f.is_active}
                        for f in app_obj.flags]}
    event = {"event_type": "app_deletion", "backup": backup,
             "backup_timestamp": deleted_at}
    insert_paired(db, NormalizedLog(
        app_id=app_obj.id,
        timestamp=deleted_at,
        level="info",
        message=f'App "{app_obj.name}" deleted',
        source="system",
        metadata=GenericMetadata(event=event),
        raw_data=json.dumps(event),
    ))
    app_obj.is_deleted = True
    app_obj.deleted_at = deleted_at
    app_obj.is_active = False
    db.commit()
    return {"success": True}


@router.post("/{app_id}/restore", response_model=schemas.AppRead)
def restore_app(app_id: int, db: Session = Depends(get_db),
                caller: Caller = Depends(get_caller)):
    app_obj = get_owned_app(db, app_id, caller, include_deleted=True)
    if not app_obj.is_deleted:
        raise InvalidRequest("App is not deleted")
    _ensure_unique_name(db, caller, app_obj.name, exclude_id=app_obj.id)
    # stays inactive until the owner explicitly reactivates it
    app_obj.is_deleted = False
    app_obj.deleted_at = None
    db.commit()
    db.refresh(app_obj)
    return app_obj


@router.post("/{app_id}/permanent-delete")
def permanently_delete_app(app_id: int, body: schemas.PermanentDeleteRequest,
                           db: Session = Depends(get_db),
                           caller: Caller = Depends(get_caller)):
    app_obj = get_owned_app(db, app_id, caller, include_deleted=True)
    if body.confirmation_phrase != f"delete-{app_obj.name}-permanently":
        raise ConfirmationMismatch()
    logs, summaries = delete_app_logs(db, [app_id])
    db.query(models.LogMetric).filter(models.LogMetric.app_id == app_id).delete(
        synchronize_session=False)
    db.query(models.Alert).filter(models.Alert.app_id == app_id).delete(
        synchronize_session=False)
    db.delete(app_obj)
    db.commit()
    logger.info("Permanently deleted app %s (%d logs, %d summaries)", app_id, logs, summaries)
    return {"success": True, "deleted_logs": logs, "deleted_summaries": summaries}


@router.get("/{app_id}/flags", response_model=List[schemas.FlagRead])
def list_flags(app_id: int, db: Session = Depends(get_db),
               caller: Caller = Depends(get_caller)):
    return get_owned_app(db, app_id, caller).flags


@router.post("/{app_id}/flags", response_model=schemas.FlagRead)
def add_flag(app_id: int, flag_in: schemas.FlagCreate, db: Session = Depends(get_db),
             caller: Caller = Depends(get_caller)):
    app_obj = get_owned_app(db, app_id, caller)
    flag = models.FlagRule(app_id=app_obj.id, pattern=flag_in.pattern,
                           name=flag_in.name, is_active=True, created_at=now_ms())
    db.add(flag)
    db.commit()
    db.refresh(flag)
    return flag


def _owned_flag(db: Session, app_id: int, flag_id: int, caller: Caller) -> models.FlagRule:
    get_owned_app(db, app_id, caller)
    flag = db.query(models.FlagRule).filter(models.FlagRule.id == flag_id,
                                            models.FlagRule.app_id == app_id).first()
    if flag is None:
        raise NotFound("Flag not found")
    return flag


@router.patch("/{app_id}/flags/{flag_id}", response_model=schemas.FlagRead)
def update_flag(app_id: int, flag_id: int, flag_in: schemas.FlagUpdate,
                db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    flag = _owned_flag(db, app_id, flag_id, caller)
    if flag_in.pattern is not None:
        flag.pattern = flag_in.pattern
    if flag_in.name is not None:
        flag.name = flag_in.name
    if flag_in.is_active is not None:
        flag.is_active = flag_in.is_active
    db.commit()
    db.refresh(flag)
    return flag


@router.delete("/{app_id}/flags/{flag_id}")
def delete_flag(app_id: int, flag_id: int, db: Session = Depends(get_db),
                caller: Caller = Depends(get_caller)):
    flag = _owned_flag(db, app_id, flag_id, caller)
    db.delete(flag)
    db.commit()
    return {"success": True}
