"""
In-process stand-in for an external cron.

Each job is a synchronous function run in a worker thread on a fixed
interval. Disabled unless ENABLE_SCHEDULER is set; production deployments
are expected to call the admin job endpoints from their own scheduler.
"""
import asyncio
import logging
from typing import Callable, List

from logsink import db
from logsink.alert.alert_system import check_alerts
from logsink.config import config
from logsink.metrics import aggregate_daily_metrics, aggregate_hourly_metrics
from logsink.retention import cleanup_old_logs, cleanup_old_metrics

logger = logging.getLogger(__name__)


def _with_session(job: Callable) -> Callable:
    def run():
        session = db.SessionLocal()
        try:
            return job(session)
        finally:
            session.close()
    run.__name__ = job.__name__
    return run


def sweep_until_done(session, max_rounds: int = 20):
    """Re-run the retention sweep while it reports more eligible rows."""
    for _ in range(max_rounds):
        if not cleanup_old_logs(session).has_more:
            break


JOBS = [
    ("check alerts", config.ALERT_CHECK_INTERVAL_SEC, check_alerts),
    ("cleanup old logs", config.RETENTION_INTERVAL_SEC, _with_session(sweep_until_done)),
    ("aggregate hourly metrics", config.METRICS_INTERVAL_SEC,
     _with_session(aggregate_hourly_metrics)),
    ("aggregate daily metrics", config.DAILY_ROLLUP_INTERVAL_SEC,
     _with_session(aggregate_daily_metrics)),
    ("cleanup old metrics", config.METRICS_CLEANUP_INTERVAL_SEC,
     _with_session(cleanup_old_metrics)),
]


async def run_periodic(name: str, interval_sec: int, job: Callable):
    try:
        while True:
            await asyncio.sleep(interval_sec)
            try:
                await asyncio.to_thread(job)
            except Exception:
                logger.exception("Scheduled job '%s' failed", name)
    except asyncio.CancelledError:
        logger.info("Scheduled job '%s' shutting down", name)
        raise


def start_jobs() -> List[asyncio.Task]:
    tasks = []
    for name, interval, job in JOBS:
        tasks.append(asyncio.create_task(run_periodic(name, interval, job)))
        logger.info("Scheduled '%s' every %ss", name, interval)
    return tasks
