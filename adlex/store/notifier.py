"""In-process change notifications keyed by check id."""

import asyncio
from uuid import UUID

from adlex.schemas.checks import CheckChange
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class CheckChangeSubscription:
    """Receives every change published for one check until closed."""

    def __init__(self, notifier: "CheckChangeNotifier", check_id: UUID):
        self.check_id = check_id
        self._notifier = notifier
        self._queue: asyncio.Queue[CheckChange] = asyncio.Queue()
        self._closed = False

    def deliver(self, change: CheckChange) -> None:
        if not self._closed:
            self._queue.put_nowait(change)

    async def get(self) -> CheckChange:
        return await self._queue.get()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._notifier._remove(self)

    async def __aenter__(self) -> "CheckChangeSubscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class CheckChangeNotifier:
    """Fan-out of committed check changes to per-check subscribers."""

    def __init__(self):
        self._subscribers: dict[UUID, set[CheckChangeSubscription]] = {}

    def subscribe(self, check_id: UUID) -> CheckChangeSubscription:
        subscription = CheckChangeSubscription(self, check_id)
        self._subscribers.setdefault(check_id, set()).add(subscription)
        LOGGER.debug("Subscribed to check changes", extra={"check_id": str(check_id)})
        return subscription

    def publish(self, change: CheckChange) -> None:
        for subscription in list(self._subscribers.get(change.check_id, ())):
            subscription.deliver(change)

    def subscriber_count(self, check_id: UUID) -> int:
        return len(self._subscribers.get(check_id, ()))

    def _remove(self, subscription: CheckChangeSubscription) -> None:
        subscribers = self._subscribers.get(subscription.check_id)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.check_id]
