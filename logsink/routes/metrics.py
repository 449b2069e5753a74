from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Literal

from logsink import metrics, schemas
from logsink.auth import Caller, caller_app_ids, get_caller, get_owned_app
from logsink.db import get_db

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


@router.get("/chart", response_model=List[schemas.ChartPoint])
def all_apps_chart(hours: int = Query(24, ge=1, le=24 * 90),
                   db: Session = Depends(get_db),
                   caller: Caller = Depends(get_caller)):
    """Hourly buckets summed across all of the caller's apps."""
    return metrics.get_all_apps_chart_data(db, caller_app_ids(db, caller), hours=hours)


@router.get("/chart/{app_id}", response_model=List[schemas.ChartPoint])
def app_chart(app_id: int,
              hours: int = Query(24, ge=1, le=24 * 90),
              period: Literal["hour", "day"] = "hour",
              db: Session = Depends(get_db),
              caller: Caller = Depends(get_caller)):
    app_obj = get_owned_app(db, app_id, caller)
    return metrics.get_app_chart_data(db, app_obj.id, hours=hours, period=period)
