import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from logsink.db import get_db
from logsink.errors import InvalidCredential, ProcessingFailure
from logsink.ingest.pipeline import authenticate, process_webhook_log
from logsink.ingest.stream import enqueue_webhook, get_redis
from logsink.schemas import IngestResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


def _api_key(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization")
    bearer = auth[len("Bearer "):].strip() if auth and auth.startswith("Bearer ") else None
    return (request.headers.get("x-api-key") or bearer
            or request.query_params.get("api_key"))


def _error(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    content = {"error": error}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


@router.post("/logs")
async def receive_logs(request: Request, db: Session = Depends(get_db)):
    """
    Webhook endpoint for log streams.
    - Body is NDJSON: one event object or a JSON array of events per line.
    - API key comes from x-api-key, Authorization: Bearer, or ?api_key=.
    - With REDIS_URL set, authenticated bodies are queued on the ingest
      stream; otherwise (or if Redis is unreachable) they are processed inline.
    """
    api_key = _api_key(request)
    if not api_key:
        return _error(401, "API key required")

    body = (await request.body()).decode("utf-8", errors="replace")

    try:
        await run_in_threadpool(authenticate, db, api_key)
    except InvalidCredential as e:
        return _error(401, "Invalid API key", e.reason)

    redis_client = get_redis()
    if redis_client is not None:
        try:
            await enqueue_webhook(redis_client, api_key, body)
            return IngestResponse(queued=True).model_dump()
        except Exception as e:
            # fall through to inline processing
            logger.warning("Ingest stream unavailable, processing inline: %s", e)

    try:
        result = await run_in_threadpool(process_webhook_log, db, api_key, body)
    except InvalidCredential as e:
        return _error(401, "Invalid API key", e.reason)
    except ProcessingFailure as e:
        return _error(500, f"Failed to process webhook: {e.reason}")
    return IngestResponse(**result.to_dict()).model_dump()


@router.get("/logs")
def verify_webhook(api_key: Optional[str] = None, db: Session = Depends(get_db)):
    """Lets a sender check its key before wiring up the log stream."""
    if not api_key:
        return _error(401, "API key required",
                      "Add ?api_key=your_api_key to the URL or use x-api-key header")
    try:
        app_obj = authenticate(db, api_key)
    except InvalidCredential:
        return _error(401, "Invalid API key",
                      "The provided API key does not match any active app")
    return {
        "success": True,
        "message": "Webhook endpoint is working!",
        "app": {"name": app_obj.name, "is_active": app_obj.is_active},
        "instructions": "Send POST requests to this endpoint with log data in the body",
    }
