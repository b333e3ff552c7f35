"""
Immutable data models for API responses and requests.
"""
from typing import Optional, Dict, Any, Literal
from datetime import datetime, timezone
from pydantic import BaseModel, Field, ConfigDict, field_serializer, field_validator


def _now() -> datetime:
    return datetime.now(timezone.utc)


class APIResponse(BaseModel):
    """Base API response model."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool = Field(..., description="Whether the request was successful")
    message: str = Field(..., description="Response message")
    timestamp: datetime = Field(default_factory=_now, description="Response timestamp")

    @field_serializer('timestamp')
    def serialize_timestamp(self, timestamp: datetime) -> str:
        return timestamp.isoformat()


class ErrorResponse(APIResponse):
    """Error response model."""
    error_code: Optional[str] = Field(None, description="Error code for debugging")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Health check response model."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=_now, description="Health check timestamp")
    version: str = Field(..., description="API version")
    dependencies: Dict[str, str] = Field(default_factory=dict, description="Dependency statuses")

    @field_serializer('timestamp')
    def serialize_timestamp(self, timestamp: datetime) -> str:
        return timestamp.isoformat()


class CallbackRequest(BaseModel):
    """A cleaner's answer to a turnover request."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    token: str = Field(..., min_length=1, description="Resumption token from the request link")
    response: Literal["yes", "no"] = Field(..., description="Cleaner answer")

    @field_validator('response', mode='before')
    @classmethod
    def normalize_response(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class CallbackData(BaseModel):
    """Where the workflow ended up after applying the answer."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    outcome: str = Field(..., description="confirmed, advanced, exhausted or already_handled")
    execution_id: Optional[str] = Field(None, description="Workflow execution id")
    status: Optional[str] = Field(None, description="Workflow status after the answer")
    cleaner_name: Optional[str] = Field(None, description="Cleaner who answered")


class CallbackResponse(APIResponse):
    """Response model for cleaner callbacks."""
    data: CallbackData = Field(..., description="Callback outcome")
