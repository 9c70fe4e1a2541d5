"""Data Transfer Objects - API contracts."""

from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import datetime
from typing import Optional, List
from restream.models.domain import StreamStatus, ScheduleType


class DurationDTO(BaseModel):
    """Run time before an automatic stop."""
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)
    seconds: int = Field(default=0, ge=0)

    model_config = ConfigDict(from_attributes=True)


class AbsoluteDTO(BaseModel):
    """Wall-clock stop time, e.g. 2024-01-15T14:30 in Europe/Berlin."""
    datetime: str = Field(..., min_length=16)
    timezone: str = Field(..., min_length=1)

    model_config = ConfigDict(from_attributes=True)


class ScheduleDTO(BaseModel):
    """Schedule configuration."""
    type: ScheduleType = ScheduleType.MANUAL
    duration: Optional[DurationDTO] = None
    absolute: Optional[AbsoluteDTO] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def check_sub_record(self):
        if self.type == ScheduleType.DURATION and self.duration is None:
            raise ValueError("duration schedule requires 'duration'")
        if self.type == ScheduleType.ABSOLUTE and self.absolute is None:
            raise ValueError("absolute schedule requires 'absolute'")
        return self


class StreamDTO(BaseModel):
    """Stream data for API responses."""
    id: str
    name: str
    stream_key: str
    video_path: str
    status: StreamStatus
    schedule: ScheduleDTO
    created_at: datetime
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    elapsed_seconds: Optional[int] = None
    last_elapsed_seconds: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class StreamCreateRequest(BaseModel):
    """Request to create a new stream."""
    name: str = Field(..., min_length=1, max_length=200)
    stream_key: str = Field(..., min_length=1)
    video_path: str = Field(..., min_length=1)
    schedule: ScheduleDTO = Field(default_factory=ScheduleDTO)
    start_immediately: bool = False


class StreamListResponse(BaseModel):
    """Response with list of streams."""
    streams: List[StreamDTO]
    total: int


class InitializeRequest(BaseModel):
    """Request to bind the manager to an application instance."""
    instance_id: str = Field(..., min_length=8)


class StreamStopResponse(BaseModel):
    """Response after a stop request."""
    status: str
    stream_id: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    error_code: Optional[str] = None
