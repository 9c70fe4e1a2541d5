"""Domain entities - internal representation (framework-agnostic)."""

import json
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class StreamStatus(str, Enum):
    """Stream status enumeration."""
    IDLE = "idle"
    LIVE = "live"
    SCHEDULED = "scheduled"  # reserved, never produced
    COMPLETED = "completed"
    ERROR = "error"
    STOPPING = "stopping"

    @classmethod
    def parse(cls, value: Optional[str]) -> "StreamStatus":
        """Parse a stored status, falling back to IDLE for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.IDLE


class ScheduleType(str, Enum):
    """How a live stream gets stopped automatically."""
    MANUAL = "manual"
    DURATION = "duration"
    ABSOLUTE = "absolute"


@dataclass
class DurationConfig:
    """Stop after a fixed run time."""
    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    def to_seconds(self) -> int:
        return self.hours * 3600 + self.minutes * 60 + self.seconds


@dataclass
class AbsoluteConfig:
    """Stop at a wall-clock time in a named timezone."""
    datetime: str
    timezone: str


@dataclass
class ScheduleConfig:
    """Schedule sub-record stored alongside a stream."""
    type: ScheduleType = ScheduleType.MANUAL
    duration: Optional[DurationConfig] = None
    absolute: Optional[AbsoluteConfig] = None

    @classmethod
    def manual(cls) -> "ScheduleConfig":
        return cls(type=ScheduleType.MANUAL)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduleConfig":
        duration = data.get("duration")
        absolute = data.get("absolute")
        schedule = cls(
            type=ScheduleType(data.get("type", "manual")),
            duration=DurationConfig(**duration) if duration else None,
            absolute=AbsoluteConfig(**absolute) if absolute else None,
        )
        # A typed schedule without its sub-record cannot arm anything
        if schedule.type == ScheduleType.DURATION and schedule.duration is None:
            return cls.manual()
        if schedule.type == ScheduleType.ABSOLUTE and schedule.absolute is None:
            return cls.manual()
        return schedule

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ScheduleConfig":
        """Parse a stored schedule; anything unreadable degrades to manual."""
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                return cls.manual()
            return cls.from_dict(data)
        except (TypeError, ValueError, KeyError):
            return cls.manual()


@dataclass
class Stream:
    """Restream job domain entity."""
    id: str
    name: str
    stream_key: str
    video_path: str
    status: StreamStatus
    schedule: ScheduleConfig
    created_at: datetime
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    last_elapsed_seconds: Optional[int] = None
    elapsed_seconds: Optional[int] = None  # derived at read time, never stored

    @property
    def is_live(self) -> bool:
        """Persisted status says live."""
        return self.status == StreamStatus.LIVE
