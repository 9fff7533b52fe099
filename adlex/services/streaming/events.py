"""Conversion of subscription callbacks into SSE-ready events."""

import json
from uuid import UUID

from adlex.core.exceptions import AccessDeniedError, AppError, CheckStateError, NotFoundError, StreamTimeoutError
from adlex.schemas.checks import CheckChange, CheckDetail
from adlex.schemas.streaming import StreamErrorCode, StreamEvent, StreamEventType


def error_code_for(error: BaseException) -> StreamErrorCode:
    if isinstance(error, StreamTimeoutError):
        return StreamErrorCode.TIMEOUT
    if isinstance(error, AccessDeniedError):
        return StreamErrorCode.ACCESS_DENIED
    if isinstance(error, NotFoundError):
        return StreamErrorCode.NOT_FOUND
    if isinstance(error, CheckStateError):
        return StreamErrorCode.CHECK_CANCELLED
    if isinstance(error, AppError):
        return StreamErrorCode.CHECK_FAILED
    return StreamErrorCode.INTERNAL


def update_event(change: CheckChange) -> StreamEvent:
    return StreamEvent(
        event_type=StreamEventType.UPDATE,
        check_id=change.check_id,
        data=change.model_dump(mode="json"),
    )


def complete_event(detail: CheckDetail) -> StreamEvent:
    return StreamEvent(
        event_type=StreamEventType.COMPLETE,
        check_id=detail.check.id,
        data=detail.model_dump(mode="json"),
    )


def error_event(check_id: UUID, error: BaseException) -> StreamEvent:
    return StreamEvent(
        event_type=StreamEventType.ERROR,
        check_id=check_id,
        data={"code": error_code_for(error).value, "message": str(error)},
    )


def heartbeat_event(check_id: UUID, count: int) -> StreamEvent:
    return StreamEvent(event_type=StreamEventType.HEARTBEAT, check_id=check_id, data={"count": count})


def format_sse(event: StreamEvent) -> str:
    """Format a StreamEvent as a raw SSE message."""
    data = event.model_dump(mode="json")
    return f"event: {data['event_type']}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"
