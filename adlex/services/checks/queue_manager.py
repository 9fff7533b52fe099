"""Concurrency-bounded admission of checks into the processor."""

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Protocol
from uuid import UUID

from adlex.schemas.checks import InputType, QueueStatus
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Processor(Protocol):
    async def process(
        self,
        check_id: UUID,
        text: str,
        organization_id: UUID,
        input_type: InputType = InputType.TEXT,
    ) -> None: ...


@dataclass(frozen=True)
class QueueJob:
    check_id: UUID
    text: str
    organization_id: UUID
    input_type: InputType = InputType.TEXT
    enqueued_at: float = field(default_factory=time.time)


class AdmissionQueueManager:
    """Starts at most ``max_concurrent`` processor runs; the rest wait FIFO.

    Counters are guarded by a lock. Processor exceptions are logged and
    never stop the drain. The wait list is unbounded.
    """

    def __init__(self, processor: Processor, max_concurrent: int = 3):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.processor = processor
        self.max_concurrent = max_concurrent
        self._lock = threading.Lock()
        self._waiting: deque[QueueJob] = deque()
        self._processing_count = 0
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()

    def enqueue(
        self,
        check_id: UUID,
        text: str,
        organization_id: UUID,
        input_type: InputType = InputType.TEXT,
    ) -> Optional[int]:
        """Admit a check.

        Must be called from a running event loop.

        Returns:
            None when the job started immediately, otherwise its 1-based
            position in the wait list.
        """
        job = QueueJob(check_id=check_id, text=text, organization_id=organization_id, input_type=input_type)
        with self._lock:
            self._waiting.append(job)
        if any(started is job for started in self._drain()):
            return None
        position = self.position(check_id)
        LOGGER.info("Check queued", extra={"check_id": str(check_id), "position": position})
        return position

    def _drain(self) -> list[QueueJob]:
        """Start waiting jobs until the queue is empty or the ceiling is reached."""
        started = []
        while True:
            with self._lock:
                if not self._waiting or self._processing_count >= self.max_concurrent:
                    break
                job = self._waiting.popleft()
                self._processing_count += 1
                generation = self._generation
            self._start(job, generation)
            started.append(job)
        return started

    def _start(self, job: QueueJob, generation: int) -> None:
        task = asyncio.get_running_loop().create_task(self._run(job, generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        LOGGER.info(
            "Check admitted",
            extra={"check_id": str(job.check_id), "waited_seconds": round(time.time() - job.enqueued_at, 3)},
        )

    async def _run(self, job: QueueJob, generation: int) -> None:
        try:
            await self.processor.process(job.check_id, job.text, job.organization_id, job.input_type)
        except Exception:
            LOGGER.error(
                "Processor raised, continuing with next job",
                exc_info=True,
                extra={"check_id": str(job.check_id)},
            )
        finally:
            with self._lock:
                # A clear() since this job started already reset the counters
                current = generation == self._generation
                if current:
                    self._processing_count -= 1
            if current:
                self._drain()

    def position(self, check_id: UUID) -> Optional[int]:
        with self._lock:
            for index, job in enumerate(self._waiting, start=1):
                if job.check_id == check_id:
                    return index
        return None

    def remove(self, check_id: UUID) -> bool:
        """Drop a job that has not started yet; later jobs move up."""
        with self._lock:
            for job in self._waiting:
                if job.check_id == check_id:
                    self._waiting.remove(job)
                    LOGGER.info("Check removed from queue", extra={"check_id": str(check_id)})
                    return True
        return False

    def status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(
                queue_length=len(self._waiting),
                processing_count=self._processing_count,
                max_concurrent=self.max_concurrent,
            )

    def clear(self) -> None:
        """Forget all waiting jobs and reset the counters.

        Runs already in flight continue but no longer count against the ceiling.
        """
        with self._lock:
            self._waiting.clear()
            self._processing_count = 0
            self._generation += 1
        LOGGER.info("Admission queue cleared")

    async def wait_idle(self) -> None:
        """Wait until no admitted run is still executing."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        self.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
