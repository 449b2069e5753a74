"""
Typed metadata variants attached to a normalized log record.

Each webhook topic gets its own metadata model; the ``kind`` field is the
discriminator stored alongside the payload so readers can tell the shapes
apart. ``GenericMetadata`` keeps the raw event verbatim for topics we do not
model explicitly.
"""
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field


class VerificationMetadata(BaseModel):
    kind: Literal["verification"] = "verification"
    deployment_name: Optional[str] = None
    deployment_id: Optional[str] = None
    project_name: Optional[str] = None
    project_id: Optional[str] = None


class ConsoleMetadata(BaseModel):
    kind: Literal["console"] = "console"
    function: Optional[Dict[str, Any]] = None
    is_truncated: Optional[bool] = None
    system_code: Optional[str] = None


class FunctionExecutionMetadata(BaseModel):
    kind: Literal["function_execution"] = "function_execution"
    function: Optional[Dict[str, Any]] = None
    status: Optional[str] = None
    cached: Optional[bool] = None
    usage: Optional[Dict[str, Any]] = None
    # execution time in milliseconds, read by function_duration alerts
    duration: Optional[float] = None
    error: Optional[str] = None


class FlaggedMetadata(BaseModel):
    kind: Literal["flagged"] = "flagged"
    flag: str
    original_topic: Optional[str] = None
    function: Optional[Dict[str, Any]] = None
    status: Optional[str] = None


class GenericMetadata(BaseModel):
    kind: Literal["generic"] = "generic"
    event: Dict[str, Any] = Field(default_factory=dict)


EventMetadata = Annotated[
    Union[VerificationMetadata, ConsoleMetadata, FunctionExecutionMetadata,
          FlaggedMetadata, GenericMetadata],
    Field(discriminator="kind"),
]


def metadata_to_record(metadata) -> Dict[str, Any]:
    """Flatten a metadata variant into the JSON stored on the full log."""
    if isinstance(metadata, GenericMetadata):
        return dict(metadata.event)
    return metadata.model_dump(exclude_none=True)


class NormalizedLog(BaseModel):
    app_id: int
    timestamp: int
    level: str
    message: str
    source: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: EventMetadata
    raw_data: str
