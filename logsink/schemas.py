from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, Dict, List, Any, Literal


class FlagBase(BaseModel):
    pattern: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=100)


class FlagCreate(FlagBase):
    pass


class FlagUpdate(BaseModel):
    pattern: Optional[str] = Field(None, min_length=1, max_length=255)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    is_active: Optional[bool] = None


class FlagRead(FlagBase):
    id: int
    is_active: bool
    created_at: int

    model_config = {"from_attributes": True}


class AppBase(BaseModel):
    name: str = Field(..., max_length=100)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name cannot be empty")
        return v


class AppCreate(AppBase):
    pass


class AppUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Name cannot be empty")
        return v


class AppRead(AppBase):
    id: int
    api_key: str
    is_active: bool
    is_deleted: bool
    deleted_at: Optional[int] = None
    total_ingested: int
    created_at: int
    flags: List[FlagRead] = []

    model_config = {"from_attributes": True}


class PermanentDeleteRequest(BaseModel):
    confirmation_phrase: str


class LogRead(BaseModel):
    id: int
    app_id: int
    timestamp: int
    level: str
    message: str
    source: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata_: Optional[Dict[str, Any]] = None
    raw_data: Optional[str] = None

    model_config = {"from_attributes": True}


class LogSummaryRead(BaseModel):
    id: int
    app_id: int
    timestamp: int
    level: str
    level_num: int
    message_short: str
    source: Optional[str] = None
    request_id: Optional[str] = None
    has_metadata: bool
    event_type: Optional[str] = None
    log_id: int

    model_config = {"from_attributes": True}


class HistoryPage(BaseModel):
    page: List[LogSummaryRead]
    next_cursor: Optional[str] = None
    is_done: bool


class IngestResponse(BaseModel):
    success: bool = True
    inserted: int = 0
    flagged: int = 0
    parse_errors: int = 0
    skipped: int = 0
    skipped_invalid: int = 0
    queued: bool = False


class CleanupRequest(BaseModel):
    normal_hours: Optional[int] = Field(None, gt=0)
    error_days: Optional[int] = Field(None, gt=0)


class CleanupResponse(BaseModel):
    deleted_count: int
    deleted_logs: int
    deleted_normal: int
    deleted_error: int
    deleted_summaries: int
    deleted_orphans: int
    has_more: bool


class ClearLogsResponse(BaseModel):
    deleted_logs: int
    deleted_summaries: int


class WipeRequest(BaseModel):
    confirmation_code: str


class WipeResponse(BaseModel):
    deleted_logs: int
    deleted_summaries: int
    deleted_metrics: int


ConditionType = Literal["error_count", "error_rate", "function_duration", "no_logs"]


class AlertCondition(BaseModel):
    type: ConditionType
    threshold: float = Field(..., ge=0)
    time_window: int = Field(..., gt=0, description="minutes")
    function_pattern: Optional[str] = None

    @model_validator(mode="after")
    def pattern_for_duration(self):
        if self.type == "function_duration" and not self.function_pattern:
            raise ValueError("function_duration alerts need a function_pattern")
        return self


class AlertCreate(BaseModel):
    app_id: int
    name: str = Field(..., min_length=1, max_length=100)
    condition: AlertCondition
    is_active: bool = True


class AlertUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    condition: Optional[AlertCondition] = None
    is_active: Optional[bool] = None


class AlertRead(BaseModel):
    id: int
    app_id: int
    name: str
    condition: AlertCondition
    is_active: bool
    last_triggered: Optional[int] = None
    trigger_count: int

    @classmethod
    def from_model(cls, alert) -> "AlertRead":
        return cls(
            id=alert.id,
            app_id=alert.app_id,
            name=alert.name,
            condition=AlertCondition.model_construct(
                type=alert.condition_type,
                threshold=alert.threshold,
                time_window=alert.time_window,
                function_pattern=alert.function_pattern,
            ),
            is_active=alert.is_active,
            last_triggered=alert.last_triggered,
            trigger_count=alert.trigger_count,
        )


class ChartPoint(BaseModel):
    timestamp: int
    hour: int
    label: str
    total_logs: int
    error_count: int
    warn_count: int
    info_count: int
    debug_count: int
    flagged_count: int
    avg_logs_per_minute: float
    error_rate: int


class StatsResponse(BaseModel):
    total: int
    by_level: Dict[str, int] = {}
    by_app: Dict[int, int] = {}
    recent_count: int
    total_ingested: int


class StorageStats(BaseModel):
    total_logs: int
    logs_by_period: Dict[str, int]
    oldest_log_timestamp: Optional[int] = None
    newest_log_timestamp: Optional[int] = None
