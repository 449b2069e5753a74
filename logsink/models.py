import time

from sqlalchemy import (BigInteger, Boolean, Column, Float, ForeignKey, Index,
                        Integer, JSON, String, Text, UniqueConstraint)
from sqlalchemy.orm import relationship
from logsink.db import Base


def now_ms() -> int:
    return int(time.time() * 1000)


class App(Base):
    __tablename__ = "apps"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    api_key = Column(String(64), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    owner_id = Column(String(100), nullable=False, index=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(BigInteger, nullable=True)
    # lifetime count of ingested records, survives retention sweeps
    total_ingested = Column(BigInteger, nullable=False, default=0)
    created_at = Column(BigInteger, nullable=False, default=now_ms)

    flags = relationship("FlagRule", back_populates="app_",
                         order_by="FlagRule.id", cascade="all, delete-orphan")


class FlagRule(Base):
    __tablename__ = "flag_rules"

    id = Column(Integer, primary_key=True, index=True)
    app_id = Column(Integer, ForeignKey("apps.id"), nullable=False, index=True)
    pattern = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(BigInteger, nullable=False, default=now_ms)
    app_ = relationship("App", back_populates="flags")


class Log(Base):
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True)
    app_id = Column(Integer, ForeignKey("apps.id"), nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    level = Column(String(10), nullable=False)
    message = Column(Text, nullable=False)
    source = Column(String(255), nullable=True)
    request_id = Column(String(100), nullable=True)
    user_id = Column(String(100), nullable=True)
    metadata_ = Column("metadata_", JSON, nullable=True)
    raw_data = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_logs_app_timestamp", "app_id", "timestamp"),
        Index("ix_logs_app_level", "app_id", "level"),
        Index("ix_logs_app_source", "app_id", "source"),
        Index("ix_logs_timestamp", "timestamp"),
        Index("ix_logs_level", "level"),
        Index("ix_logs_level_timestamp", "level", "timestamp"),
    )


class LogSummary(Base):
    __tablename__ = "log_summaries"

    id = Column(Integer, primary_key=True)
    app_id = Column(Integer, ForeignKey("apps.id"), nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    level = Column(String(10), nullable=False)
    level_num = Column(Integer, nullable=False)
    message_short = Column(String(255), nullable=False)
    source = Column(String(255), nullable=True)
    request_id = Column(String(100), nullable=True)
    has_metadata = Column(Boolean, nullable=False, default=False)
    # metadata kind, or the event_type/topic a generic event carries
    event_type = Column(String(50), nullable=True)
    log_id = Column(Integer, ForeignKey("logs.id"), nullable=False, unique=True)

    __table_args__ = (
        Index("ix_log_summaries_app_timestamp", "app_id", "timestamp"),
        Index("ix_log_summaries_app_level", "app_id", "level"),
        Index("ix_log_summaries_app_source", "app_id", "source"),
        Index("ix_log_summaries_app_event_type", "app_id", "event_type"),
        Index("ix_log_summaries_timestamp", "timestamp"),
        Index("ix_log_summaries_level", "level"),
        Index("ix_log_summaries_level_num_timestamp", "level_num", "timestamp"),
        Index("ix_log_summaries_app_level_num_timestamp",
              "app_id", "level_num", "timestamp"),
    )


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)
    app_id = Column(Integer, ForeignKey("apps.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    condition_type = Column(String(30), nullable=False)
    threshold = Column(Float, nullable=False)
    time_window = Column(Integer, nullable=False)  # minutes
    function_pattern = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    owner_id = Column(String(100), nullable=False, index=True)
    last_triggered = Column(BigInteger, nullable=True, index=True)
    trigger_count = Column(Integer, nullable=False, default=0)


class LogMetric(Base):
    __tablename__ = "log_metrics"

    id = Column(Integer, primary_key=True)
    app_id = Column(Integer, ForeignKey("apps.id"), nullable=False)
    period = Column(String(10), nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    total_logs = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    warn_count = Column(Integer, nullable=False, default=0)
    info_count = Column(Integer, nullable=False, default=0)
    debug_count = Column(Integer, nullable=False, default=0)
    flagged_count = Column(Integer, nullable=False, default=0)
    avg_logs_per_minute = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint("app_id", "period", "timestamp",
                         name="uq_log_metrics_app_period_timestamp"),
        Index("ix_log_metrics_timestamp", "timestamp"),
    )
