from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict
from uuid import UUID

from pydantic import BaseModel, Field


class StreamEventType(str, Enum):
    UPDATE = "check:update"
    COMPLETE = "check:complete"
    ERROR = "check:error"
    HEARTBEAT = "heartbeat"


class StreamErrorCode(str, Enum):
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    CHECK_FAILED = "check_failed"
    CHECK_CANCELLED = "check_cancelled"
    TIMEOUT = "timeout"
    INTERNAL = "internal_error"


class StreamEvent(BaseModel):
    event_type: StreamEventType
    check_id: UUID
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)
