import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from logsink.ingest.events import (ConsoleMetadata, FlaggedMetadata,
                                   FunctionExecutionMetadata, GenericMetadata,
                                   NormalizedLog, VerificationMetadata)
from logsink.levels import canonical_level
from logsink.models import now_ms

logger = logging.getLogger(__name__)

FLAG_MARKER = "\U0001F6A9"  # red triangular flag

# anything below this is taken to be epoch seconds rather than milliseconds
_SECONDS_CUTOFF = 100_000_000_000
# largest integer a double holds exactly; later than any real epoch-ms value
_MAX_TIMESTAMP_MS = 2 ** 53


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _bool(value: Any) -> Optional[bool]:
    return None if value is None else bool(value)


def _function(event: Dict[str, Any]) -> Dict[str, Any]:
    fn = event.get("function")
    return fn if isinstance(fn, dict) else {}


def parse_timestamp(value: Any, fallback: int) -> int:
    """Turn a sender-supplied timestamp into epoch milliseconds."""
    if isinstance(value, bool) or value is None:
        return fallback
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return fallback
        if value <= 0:
            return fallback
        if value < _SECONDS_CUTOFF:
            value = value * 1000
        if value > _MAX_TIMESTAMP_MS:
            return fallback
        return int(value)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return fallback
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return fallback


def function_summary(event: Dict[str, Any]) -> str:
    fn = _function(event)
    parts = [fn.get("type") or "function", fn.get("path") or "unknown",
             event.get("status") or ""]
    return " ".join(str(p) for p in parts if p).strip()


def _verification(event):
    deployment = event.get("deployment_name") or event.get("deployment_id")
    return dict(
        level="info",
        message=_text(event.get("message")) or "Log stream verification",
        source=_text(deployment) or "system",
        metadata=VerificationMetadata(
            deployment_name=_text(event.get("deployment_name")),
            deployment_id=_text(event.get("deployment_id")),
            project_name=_text(event.get("project_name")),
            project_id=_text(event.get("project_id")),
        ),
    )


def _console(event):
    fn = _function(event)
    return dict(
        level=canonical_level(event.get("log_level")),
        message=_text(event.get("message")) or "Console log",
        source=_text(fn.get("path")),
        request_id=_text(fn.get("request_id")),
        metadata=ConsoleMetadata(
            function=fn or None,
            is_truncated=_bool(event.get("is_truncated")),
            system_code=_text(event.get("system_code")),
        ),
    )


def _function_execution(event):
    fn = _function(event)
    status = _text(event.get("status")) or "unknown"
    duration = event.get("execution_time_ms")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        duration = None
    return dict(
        level="info" if status == "success" else "error",
        message=f"Function {fn.get('path') or 'unknown'} {status}",
        source=_text(fn.get("path")),
        request_id=_text(fn.get("request_id")),
        metadata=FunctionExecutionMetadata(
            function=fn or None,
            status=status,
            cached=_bool(fn.get("cached", event.get("cached"))),
            usage=event.get("usage") if isinstance(event.get("usage"), dict) else None,
            duration=duration,
            error=_text(event.get("error_message")),
        ),
    )


def _flagged(event):
    fn = _function(event)
    flag = _text(event.get("flag")) or "flag"
    base = _text(event.get("message")) or function_summary(event)
    return dict(
        level="warn",
        message=f"{FLAG_MARKER} {flag}: {base}",
        source=_text(fn.get("path")),
        request_id=_text(fn.get("request_id")),
        metadata=FlaggedMetadata(
            flag=flag,
            original_topic=_text(event.get("original_topic")),
            function=fn or None,
            status=_text(event.get("status")),
        ),
    )


def _scheduler_stats(event):
    return dict(
        level="info",
        message=(f"Scheduler stats: {event.get('num_running_jobs')} running jobs, "
                 f"{event.get('lag_seconds')}s lag"),
        source="scheduler",
        metadata=GenericMetadata(event=event),
    )


def _audit_log(event):
    return dict(
        level="info",
        message=f"Audit log: {event.get('audit_log_action')}",
        source="audit",
        metadata=GenericMetadata(event=event),
    )


def _generic(event):
    fn = _function(event)
    topic = _text(event.get("topic"))
    return dict(
        level=canonical_level(event.get("level") or event.get("log_level")),
        message=(_text(event.get("message")) or _text(event.get("msg"))
                 or f"Unknown event type: {topic}"),
        source=(_text(event.get("source")) or _text(fn.get("path")) or topic),
        request_id=(_text(event.get("request_id")) or _text(event.get("requestId"))
                    or _text(fn.get("request_id"))),
        user_id=_text(event.get("user_id")) or _text(event.get("userId")),
        metadata=GenericMetadata(event=event),
    )


_BUILDERS = {
    "verification": _verification,
    "console": _console,
    "function_execution": _function_execution,
    "flagged": _flagged,
    "scheduler_stats": _scheduler_stats,
    "audit_log": _audit_log,
}


def normalize_event(event: Any, app_id: int, now: Optional[int] = None) -> Optional[NormalizedLog]:
    """
    Map one parsed webhook event onto a NormalizedLog.

    Returns None when the event cannot be interpreted; the caller is expected
    to log and count the skip. Never raises for malformed input.
    """
    if not isinstance(event, dict):
        return None
    fallback = now if now is not None else now_ms()
    try:
        builder = _BUILDERS.get(event.get("topic"), _generic)
        fields = builder(event)
        return NormalizedLog(
            app_id=app_id,
            timestamp=parse_timestamp(event.get("timestamp"), fallback),
            raw_data=json.dumps(event, default=str),
            **fields,
        )
    except Exception:
        logger.warning("Could not normalize event with topic %r",
                       event.get("topic"), exc_info=True)
        return None
