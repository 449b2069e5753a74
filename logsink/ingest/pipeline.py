import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from logsink import models
from logsink.config import config
from logsink.errors import InvalidCredential, ProcessingFailure
from logsink.ingest.flags import match_flags
from logsink.ingest.normalizer import normalize_event
from logsink.models import now_ms
from logsink.store import insert_paired

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    inserted: int = 0
    flagged: int = 0
    parse_errors: int = 0
    # events beyond the per-call cap, counted but not processed
    skipped: int = 0
    # events that could not be normalized
    skipped_invalid: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def authenticate(db: Session, api_key: str) -> models.App:
    if not api_key:
        raise InvalidCredential("API key required")
    app_obj = db.query(models.App).filter(models.App.api_key == api_key).first()
    if app_obj is None or not app_obj.is_active or app_obj.is_deleted:
        raise InvalidCredential("Invalid API key or app is inactive")
    return app_obj


def parse_log_lines(log_data: str, result: IngestResult) -> List[Any]:
    """
    Split an NDJSON body into events.

    A line may hold one object or a JSON array of objects. Lines that fail
    to parse are logged and counted, the rest of the body is still used.
    """
    events: List[Any] = []
    for line_no, line in enumerate((log_data or "").splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            parsed = json.loads(line)
        except ValueError:
            result.parse_errors += 1
            logger.warning("Skipping unparseable log line %d: %.200s", line_no, line)
            continue
        if isinstance(parsed, list):
            events.extend(parsed)
        else:
            events.append(parsed)
    return events


class _Batch:
    """Per-call state: enforces the event cap and writes paired records."""

    def __init__(self, db: Session, app_obj: models.App, result: IngestResult,
                 max_events: int, now: Optional[int]):
        self.db = db
        self.app = app_obj
        self.result = result
        self.max_events = max_events
        self.now = now
        self.processed = 0

    def accept(self, event: Any, derived: bool = False) -> bool:
        if self.processed >= self.max_events:
            if self.result.skipped == 0:
                logger.warning("Event cap of %d reached for app %s, skipping the rest",
                               self.max_events, self.app.id)
            self.result.skipped += 1
            return False
        self.processed += 1
        record = normalize_event(event, self.app.id, now=self.now)
        if record is None:
            self.result.skipped_invalid += 1
            logger.warning("Skipping event that could not be normalized for app %s",
                           self.app.id)
            return False
        insert_paired(self.db, record)
        self.result.inserted += 1
        if derived:
            self.result.flagged += 1
        return True


def process_webhook_log(db: Session, api_key: str, log_data: str,
                        max_events: Optional[int] = None,
                        now: Optional[int] = None) -> IngestResult:
    """
    Authenticate, parse and persist one webhook body.

    Raises InvalidCredential before anything is written when the key does not
    belong to an active app, and ProcessingFailure (after rolling back) on
    any unexpected storage error.
    """
    app_obj = authenticate(db, api_key)
    result = IngestResult()
    events = parse_log_lines(log_data, result)
    flags = [f for f in app_obj.flags if f.is_active]
    batch = _Batch(db, app_obj, result,
                   max_events or config.MAX_EVENTS_PER_REQUEST,
                   now if now is not None else now_ms())

    try:
        for event in events:
            if not batch.accept(event):
                continue
            for flagged_event in match_flags(flags, event):
                batch.accept(flagged_event, derived=True)

        if result.inserted:
            (db.query(models.App)
             .filter(models.App.id == app_obj.id)
             .update({models.App.total_ingested: models.App.total_ingested + result.inserted},
                     synchronize_session=False))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("Failed to process webhook for app %s", app_obj.id)
        raise ProcessingFailure(f"Failed to process log entry: {e}") from e

    logger.info("Ingested %d records (%d flagged) for app %s; %d parse errors, %d skipped",
                result.inserted, result.flagged, app_obj.id,
                result.parse_errors, result.skipped + result.skipped_invalid)
    return result
