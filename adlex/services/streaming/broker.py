"""Per-check live update subscriptions with heartbeats and timeouts.

Each ``open`` call drives its own small state machine::

    SUBSCRIBING -> ACTIVE -> COMPLETED | FAILED | TIMED_OUT | CANCELLED

All timer state lives on the session object, so subscriptions never share
mutable state. Every exit path closes the change subscription.
"""

import asyncio
import inspect
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol
from uuid import UUID

from adlex.core.config import StreamSettings
from adlex.core.exceptions import (
    AccessDeniedError,
    AppError,
    CheckStateError,
    NotFoundError,
    StreamTimeoutError,
)
from adlex.schemas.checks import CheckChange, CheckDetail, CheckRecord, CheckStatus, InputType
from adlex.schemas.streaming import StreamEvent
from adlex.schemas.users import UserRecord
from adlex.services.checks.access import can_view
from adlex.services.streaming.events import complete_event, error_event, heartbeat_event, update_event
from adlex.store.notifier import CheckChangeSubscription
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class SubscriptionState(str, Enum):
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class CheckReader(Protocol):
    async def get_check(self, check_id: UUID) -> Optional[CheckRecord]: ...

    async def get_check_detail(self, check_id: UUID) -> Optional[CheckDetail]: ...

    async def get_user(self, user_id: UUID) -> Optional[UserRecord]: ...

    def subscribe(self, check_id: UUID) -> CheckChangeSubscription: ...


@dataclass
class StreamCallbacks:
    """Subscriber hooks; each may be a plain function or a coroutine function."""

    on_update: Optional[Callable[[CheckChange], Any]] = None
    on_complete: Optional[Callable[[CheckDetail], Any]] = None
    on_error: Optional[Callable[[AppError], Any]] = None
    on_heartbeat: Optional[Callable[[int], Any]] = None


@dataclass(frozen=True)
class StreamTimings:
    connection_timeout: float
    progress_timeout: float
    heartbeat_interval: float
    stalled_heartbeat_interval: float
    max_heartbeats: int

    @classmethod
    def for_input(cls, settings: StreamSettings, input_type: InputType) -> "StreamTimings":
        # OCR makes image checks slower, so they get longer windows
        is_image = input_type == InputType.IMAGE
        return cls(
            connection_timeout=settings.image_connection_timeout if is_image else settings.text_connection_timeout,
            progress_timeout=settings.image_progress_timeout if is_image else settings.text_progress_timeout,
            heartbeat_interval=settings.heartbeat_interval,
            stalled_heartbeat_interval=settings.stalled_heartbeat_interval,
            max_heartbeats=settings.max_heartbeats,
        )


async def _invoke(callback: Optional[Callable[[Any], Any]], value: Any) -> None:
    if callback is None:
        return
    result = callback(value)
    if inspect.isawaitable(result):
        await result


class _SubscriptionSession:
    def __init__(
        self,
        store: CheckReader,
        settings: StreamSettings,
        check_id: UUID,
        user_id: UUID,
        callbacks: StreamCallbacks,
        cancel_event: asyncio.Event,
    ):
        self.store = store
        self.settings = settings
        self.check_id = check_id
        self.user_id = user_id
        self.callbacks = callbacks
        self.cancel_event = cancel_event
        self.state = SubscriptionState.SUBSCRIBING
        self.heartbeats_sent = 0
        self._subscription: Optional[CheckChangeSubscription] = None

    @property
    def _log_extra(self) -> dict:
        return {"check_id": str(self.check_id), "state": self.state.value}

    async def run(self) -> SubscriptionState:
        try:
            self.state = await self._run()
        except Exception as e:
            LOGGER.error("Stream subscription failed", exc_info=True, extra=self._log_extra)
            error = e if isinstance(e, AppError) else AppError(f"Stream failed: {e}", original_error=e)
            self.state = await self._fail(error, SubscriptionState.FAILED)
        finally:
            if self._subscription is not None:
                self._subscription.close()
        LOGGER.info("Stream subscription closed", extra=self._log_extra)
        return self.state

    async def _run(self) -> SubscriptionState:
        if self.cancel_event.is_set():
            return SubscriptionState.CANCELLED

        check = await self.store.get_check(self.check_id)
        if check is None:
            return await self._fail(NotFoundError(f"Check {self.check_id} not found"), SubscriptionState.FAILED)
        user = await self.store.get_user(self.user_id)
        if not can_view(user, check):
            return await self._fail(
                AccessDeniedError("You do not have access to this check"), SubscriptionState.FAILED
            )
        if check.status.is_terminal:
            return await self._deliver_terminal(check)
        if self.cancel_event.is_set():
            return SubscriptionState.CANCELLED

        self._subscription = self.store.subscribe(self.check_id)
        self.state = SubscriptionState.ACTIVE

        # The check may have finished between the first read and subscribing
        check = await self.store.get_check(self.check_id)
        if check is None:
            return await self._fail(NotFoundError(f"Check {self.check_id} not found"), SubscriptionState.FAILED)
        if check.status.is_terminal:
            return await self._deliver_terminal(check)

        return await self._watch(StreamTimings.for_input(self.settings, check.input_type))

    async def _watch(self, timings: StreamTimings) -> SubscriptionState:
        loop = asyncio.get_running_loop()
        now = loop.time()
        connection_deadline = now + timings.connection_timeout
        progress_deadline = now + timings.progress_timeout
        heartbeat_interval = timings.heartbeat_interval
        next_heartbeat = now + heartbeat_interval
        stalled = False

        change_task = asyncio.ensure_future(self._subscription.get())
        cancel_task = asyncio.ensure_future(self.cancel_event.wait())
        try:
            while True:
                deadlines = [connection_deadline]
                if not stalled:
                    deadlines.append(progress_deadline)
                if self.heartbeats_sent < timings.max_heartbeats:
                    deadlines.append(next_heartbeat)
                timeout = max(0.0, min(deadlines) - loop.time())

                done, _ = await asyncio.wait(
                    {change_task, cancel_task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )

                if cancel_task in done:
                    return SubscriptionState.CANCELLED

                if change_task in done:
                    change = change_task.result()
                    if change.status.is_terminal:
                        check = await self.store.get_check(self.check_id)
                        return await self._deliver_terminal(check)
                    change_task = asyncio.ensure_future(self._subscription.get())
                    await _invoke(self.callbacks.on_update, change)
                    progress_deadline = loop.time() + timings.progress_timeout
                    stalled = False
                    continue

                now = loop.time()
                if now >= connection_deadline:
                    return await self._on_connection_timeout(timings)

                if not stalled and now >= progress_deadline:
                    stalled = True
                    heartbeat_interval = timings.stalled_heartbeat_interval
                    next_heartbeat = now + heartbeat_interval
                    LOGGER.warning("No progress on check, shortening heartbeat interval", extra=self._log_extra)

                if self.heartbeats_sent < timings.max_heartbeats and now >= next_heartbeat:
                    self.heartbeats_sent += 1
                    next_heartbeat = now + heartbeat_interval
                    await _invoke(self.callbacks.on_heartbeat, self.heartbeats_sent)
        finally:
            for task in (change_task, cancel_task):
                task.cancel()
            await asyncio.gather(change_task, cancel_task, return_exceptions=True)

    async def _on_connection_timeout(self, timings: StreamTimings) -> SubscriptionState:
        check = await self.store.get_check(self.check_id)
        if check is not None and check.status.is_terminal:
            return await self._deliver_terminal(check)
        LOGGER.warning("Stream connection timed out", extra=self._log_extra)
        return await self._fail(
            StreamTimeoutError(f"Timed out after {timings.connection_timeout:g}s waiting for the check result"),
            SubscriptionState.TIMED_OUT,
        )

    async def _deliver_terminal(self, check: Optional[CheckRecord]) -> SubscriptionState:
        """Hand the final record to ``on_complete``; cancellation goes to ``on_error``."""
        if check is None:
            return await self._fail(NotFoundError(f"Check {self.check_id} not found"), SubscriptionState.FAILED)

        if check.status == CheckStatus.CANCELLED:
            return await self._fail(
                CheckStateError(check.error_message or "Check was cancelled"), SubscriptionState.FAILED
            )

        detail = await self.store.get_check_detail(self.check_id)
        if detail is None:
            return await self._fail(NotFoundError(f"Check {self.check_id} not found"), SubscriptionState.FAILED)
        try:
            await _invoke(self.callbacks.on_complete, detail)
        except Exception:
            # The terminal callback already fired; on_error must not follow it
            LOGGER.error("on_complete callback raised", exc_info=True, extra=self._log_extra)
        return SubscriptionState.COMPLETED

    async def _fail(self, error: AppError, state: SubscriptionState) -> SubscriptionState:
        try:
            await _invoke(self.callbacks.on_error, error)
        except Exception:
            LOGGER.error("on_error callback raised", exc_info=True, extra=self._log_extra)
        return state


class StreamingUpdateBroker:
    """Entry point for watching a single check's progress."""

    def __init__(self, store: CheckReader, settings: Optional[StreamSettings] = None):
        self.store = store
        self.settings = settings or StreamSettings()

    async def open(
        self,
        check_id: UUID,
        user_id: UUID,
        callbacks: StreamCallbacks,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SubscriptionState:
        """Run one subscription until it reaches a terminal state.

        Setting ``cancel_event`` ends the subscription without further
        callbacks; setting it more than once is harmless.
        """
        session = _SubscriptionSession(
            self.store,
            self.settings,
            check_id,
            user_id,
            callbacks,
            cancel_event or asyncio.Event(),
        )
        return await session.run()

    async def events(
        self,
        check_id: UUID,
        user_id: UUID,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield the subscription's events in order until it ends.

        Closing the iterator early cancels the subscription.
        """
        queue: asyncio.Queue[Optional[StreamEvent]] = asyncio.Queue()
        cancel_event = cancel_event or asyncio.Event()
        callbacks = StreamCallbacks(
            on_update=lambda change: queue.put_nowait(update_event(change)),
            on_complete=lambda detail: queue.put_nowait(complete_event(detail)),
            on_error=lambda error: queue.put_nowait(error_event(check_id, error)),
            on_heartbeat=lambda count: queue.put_nowait(heartbeat_event(check_id, count)),
        )
        task = asyncio.ensure_future(self.open(check_id, user_id, callbacks, cancel_event))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while (event := await queue.get()) is not None:
                yield event
        finally:
            cancel_event.set()
            await asyncio.gather(task, return_exceptions=True)
