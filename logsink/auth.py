"""
Caller identity and capabilities.

User authentication happens upstream; by the time a request reaches this
service the caller's id is in the X-User-Id header. Capabilities are derived
here and checked explicitly by every administrative operation.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from logsink import models
from logsink.config import config
from logsink.errors import AccessDenied, NotFound

ADMIN = "admin"


@dataclass(frozen=True)
class Caller:
    user_id: str
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


def caller_for(user_id: str) -> Caller:
    capabilities = {ADMIN} if user_id in config.ADMIN_USER_IDS else set()
    return Caller(user_id=user_id, capabilities=frozenset(capabilities))


def get_caller(x_user_id: Optional[str] = Header(default=None)) -> Caller:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Must be authenticated")
    return caller_for(x_user_id.strip())


def require_capability(capability: str):
    def _check(caller: Caller = Depends(get_caller)) -> Caller:
        if not caller.can(capability):
            raise AccessDenied(f"{capability} capability required")
        return caller
    return _check


def get_owned_app(db: Session, app_id: int, caller: Caller,
                  include_deleted: bool = False) -> models.App:
    app_obj = db.query(models.App).filter(models.App.id == app_id).first()
    if app_obj is None or app_obj.owner_id != caller.user_id:
        raise AccessDenied("App not found or access denied")
    if app_obj.is_deleted and not include_deleted:
        raise NotFound("App has been deleted")
    return app_obj


def get_owned_alert(db: Session, alert_id: int, caller: Caller) -> models.Alert:
    alert = db.query(models.Alert).filter(models.Alert.id == alert_id).first()
    if alert is None or alert.owner_id != caller.user_id:
        raise AccessDenied("Alert not found or access denied")
    # alerts go with their app when it is soft-deleted
    get_owned_app(db, alert.app_id, caller)
    return alert


def caller_app_ids(db: Session, caller: Caller, app_id: Optional[int] = None) -> List[int]:
    """App ids a read may cover: one owned app, or all of the caller's live apps."""
    if app_id is not None:
        return [get_owned_app(db, app_id, caller).id]
    rows = (db.query(models.App.id)
            .filter(models.App.owner_id == caller.user_id,
                    models.App.is_deleted.is_(False))
            .all())
    return [row[0] for row in rows]
