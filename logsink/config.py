import os
from dotenv import load_dotenv

load_dotenv()


def _csv(name: str) -> list:
    raw = os.getenv(name) or ""
    return [item.strip() for item in raw.split(",") if item.strip()]


def _flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    PROJECT_NAME: str = "logsink"
    # trim surrounding whitespace/quotes if present in .env
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./logsink.db")
    if DATABASE_URL:
        DATABASE_URL = DATABASE_URL.strip().strip("'\"")

    # unset -> webhooks are processed inline, no stream buffer
    REDIS_URL: str | None = os.getenv("REDIS_URL") or None
    INGEST_STREAM: str = os.getenv("INGEST_STREAM", "logsink:webhooks")
    INGEST_GROUP: str = os.getenv("INGEST_GROUP", "ingest-group")
    INGEST_CONSUMER: str | None = os.getenv("INGEST_CONSUMER")
    INGEST_DLQ: str = os.getenv("INGEST_DLQ", "logsink:dlq")
    INGEST_BATCH_SIZE: int = int(os.getenv("INGEST_BATCH_SIZE", "50"))
    INGEST_BLOCK_MS: int = int(os.getenv("INGEST_BLOCK_MS", "2000"))

    MAX_EVENTS_PER_REQUEST: int = int(os.getenv("MAX_EVENTS_PER_REQUEST", "100"))
    MESSAGE_SHORT_LENGTH: int = int(os.getenv("MESSAGE_SHORT_LENGTH", "100"))

    RETENTION_NORMAL_HOURS: int = int(os.getenv("RETENTION_NORMAL_HOURS", "72"))
    RETENTION_ERROR_DAYS: int = int(os.getenv("RETENTION_ERROR_DAYS", "14"))
    RETENTION_BATCH_SIZE: int = int(os.getenv("RETENTION_BATCH_SIZE", "50"))
    METRICS_RETENTION_DAYS: int = int(os.getenv("METRICS_RETENTION_DAYS", "90"))
    METRICS_CLEANUP_BATCH_SIZE: int = int(
        os.getenv("METRICS_CLEANUP_BATCH_SIZE", "100"))

    ENABLE_SCHEDULER: bool = _flag("ENABLE_SCHEDULER")
    ALERT_CHECK_INTERVAL_SEC: int = int(os.getenv("ALERT_CHECK_INTERVAL_SEC", "300"))
    RETENTION_INTERVAL_SEC: int = int(os.getenv("RETENTION_INTERVAL_SEC", "21600"))
    METRICS_INTERVAL_SEC: int = int(os.getenv("METRICS_INTERVAL_SEC", "3600"))
    DAILY_ROLLUP_INTERVAL_SEC: int = int(
        os.getenv("DAILY_ROLLUP_INTERVAL_SEC", "86400"))
    METRICS_CLEANUP_INTERVAL_SEC: int = int(
        os.getenv("METRICS_CLEANUP_INTERVAL_SEC", "86400"))

    ADMIN_USER_IDS: list = _csv("ADMIN_USER_IDS")
    CORS_ORIGINS: list = _csv("CORS_ORIGINS")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    WIPE_CONFIRMATION_CODE: str = os.getenv(
        "WIPE_CONFIRMATION_CODE", "WIPE_ALL_LOGS_CONFIRM")


config = Config()
