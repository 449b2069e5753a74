from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from logsink import queries, schemas
from logsink.auth import Caller, get_caller
from logsink.db import get_db

router = APIRouter(prefix="/api/v1/stats", tags=["statistics"])


@router.get("/", response_model=schemas.StatsResponse)
def get_statistics(app_id: Optional[int] = None, db: Session = Depends(get_db),
                   caller: Caller = Depends(get_caller)):
    """
    Returns retained log counts by level and by app, the last hour's count,
    and the lifetime ingest total for the caller's apps.
    """
    return queries.get_log_stats(db, caller, app_id=app_id)


@router.get("/storage", response_model=schemas.StorageStats)
def get_storage_statistics(app_id: Optional[int] = None, db: Session = Depends(get_db),
                           caller: Caller = Depends(get_caller)):
    """Retained log counts by age bucket, with the oldest and newest timestamps."""
    return queries.get_storage_stats(db, caller, app_id=app_id)
