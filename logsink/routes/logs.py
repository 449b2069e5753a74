from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from logsink import queries, schemas
from logsink.auth import Caller, caller_app_ids, get_caller
from logsink.db import get_db
from logsink.retention import cleanup_old_logs
from logsink.store import delete_app_logs

router = APIRouter(prefix="/api/v1/logs", tags=["logs"])


@router.get("/tail", response_model=List[schemas.LogSummaryRead])
def tail_logs(
    app_id: Optional[int] = None,
    since: Optional[int] = None,
    limit: int = Query(150, ge=1, le=queries.MAX_TAIL_LIMIT),
    min_level: str = "warn",
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """
    Live tail over the summary tier: newest first, at or above `min_level`,
    no older than `since` (epoch ms, default: last 5 minutes).
    """
    return queries.tail(db, caller, app_id=app_id, since=since, limit=limit,
                        min_level=min_level)


@router.get("/history", response_model=schemas.HistoryPage)
def log_history(
    app_id: Optional[int] = None,
    start: Optional[int] = None,
    end: Optional[int] = None,
    cursor: Optional[str] = None,
    page_size: int = Query(100, ge=1, le=queries.MAX_PAGE_SIZE),
    min_level: str = "info",
    source: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=200),
    event_type: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """
    Paged search over the summary tier. `start`/`end` are inclusive epoch-ms
    bounds; `search` is a case-insensitive substring of message, source or
    request id.
    """
    return queries.history(db, caller, app_id=app_id, start=start, end=end, cursor=cursor,
                           page_size=page_size, min_level=min_level, source=source,
                           search=search, event_type=event_type)


@router.get("/sources", response_model=List[str])
def log_sources(app_id: Optional[int] = None, db: Session = Depends(get_db),
                caller: Caller = Depends(get_caller)):
    return queries.get_log_sources(db, caller, app_id=app_id)


@router.get("/event-types", response_model=List[str])
def log_event_types(app_id: Optional[int] = None, db: Session = Depends(get_db),
                    caller: Caller = Depends(get_caller)):
    return queries.get_event_types(db, caller, app_id=app_id)


@router.post("/cleanup", response_model=schemas.CleanupResponse)
def cleanup_logs(body: Optional[schemas.CleanupRequest] = None,
                 db: Session = Depends(get_db),
                 caller: Caller = Depends(get_caller)):
    """Run one retention batch over the caller's own apps."""
    body = body or schemas.CleanupRequest()
    app_ids = caller_app_ids(db, caller)
    if not app_ids:
        return schemas.CleanupResponse(deleted_count=0, deleted_logs=0, deleted_normal=0,
                                       deleted_error=0, deleted_summaries=0,
                                       deleted_orphans=0, has_more=False)
    result = cleanup_old_logs(db, normal_hours=body.normal_hours,
                              error_days=body.error_days, app_ids=app_ids)
    return result.to_dict()


@router.delete("/", response_model=schemas.ClearLogsResponse)
def clear_logs(app_id: Optional[int] = None, db: Session = Depends(get_db),
               caller: Caller = Depends(get_caller)):
    """Delete every log for one owned app, or for all of the caller's apps."""
    app_ids = caller_app_ids(db, caller, app_id)
    logs, summaries = delete_app_logs(db, app_ids)
    db.commit()
    return {"deleted_logs": logs, "deleted_summaries": summaries}


@router.get("/{log_id}", response_model=schemas.LogRead)
def read_log(log_id: int, db: Session = Depends(get_db),
             caller: Caller = Depends(get_caller)):
    return queries.get_full_log(db, caller, log_id)
