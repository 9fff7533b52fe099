"""Background regeneration of dictionary embeddings with per-item isolation."""

import asyncio
import threading
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
from uuid import UUID

from adlex.core.exceptions import NotFoundError
from adlex.schemas.dictionaries import (
    DictionaryEntryRecord,
    EmbeddingFailure,
    EmbeddingJob,
    EmbeddingJobStatus,
)
from adlex.services.similarity.cache import TTLCache, organization_prefix
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class VectorStore(Protocol):
    async def list_missing_vectors(
        self, organization_id: UUID, entry_ids: Optional[Sequence[UUID]] = None
    ) -> list[DictionaryEntryRecord]: ...

    async def set_vector(self, entry_id: UUID, vector: Sequence[float]) -> bool: ...


class Embedder(Protocol):
    async def create_embedding(self, text: str) -> list[float]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _JobRecord:
    """Mutable job state; only the owning task writes, readers take snapshots."""

    def __init__(self, job_id: str, organization_id: UUID, total: int, started_at: datetime):
        self._lock = threading.Lock()
        self.id = job_id
        self.organization_id = organization_id
        self.total = total
        self.processed = 0
        self.success = 0
        self.failures: list[EmbeddingFailure] = []
        self.status = EmbeddingJobStatus.QUEUED
        self.started_at = started_at
        self.completed_at: Optional[datetime] = None

    def mark_processing(self) -> None:
        with self._lock:
            self.status = EmbeddingJobStatus.PROCESSING

    def record_success(self) -> None:
        with self._lock:
            self.success += 1
            self.processed += 1

    def record_failure(self, entry: DictionaryEntryRecord, error: str) -> None:
        with self._lock:
            self.failures.append(EmbeddingFailure(id=entry.id, phrase=entry.phrase, error=error))
            self.processed += 1

    def mark_completed(self, completed_at: datetime) -> None:
        with self._lock:
            self.status = EmbeddingJobStatus.COMPLETED
            self.completed_at = completed_at

    def snapshot(self) -> EmbeddingJob:
        with self._lock:
            return EmbeddingJob(
                id=self.id,
                organization_id=self.organization_id,
                status=self.status,
                total=self.total,
                processed=self.processed,
                success=self.success,
                failure=len(self.failures),
                failures=tuple(self.failures),
                started_at=self.started_at,
                completed_at=self.completed_at,
            )


class EmbeddingBatchQueue:
    """Runs embedding regeneration jobs in the background.

    Items are embedded one at a time. A failing item is recorded on the job
    and the batch moves on; failed items still count as processed. Running
    jobs cannot be cancelled. Completed jobs are dropped once older than the
    retention window, checked whenever jobs are enqueued or read.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        retention: timedelta = timedelta(hours=24),
        now: Callable[[], datetime] = _utcnow,
        cache: Optional[TTLCache] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.retention = retention
        self._now = now
        self.cache = cache
        self._jobs: dict[str, _JobRecord] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    async def enqueue_organization(
        self,
        organization_id: UUID,
        entry_ids: Optional[Sequence[UUID]] = None,
    ) -> EmbeddingJob:
        """Start embedding every entry of the organization that has no vector.

        ``entry_ids`` narrows the target set. Returns as soon as the job is
        registered; an empty target set yields an already completed job.
        """
        self._evict_expired()
        entries = await self.store.list_missing_vectors(organization_id, entry_ids)

        job = _JobRecord(uuid.uuid4().hex, organization_id, len(entries), self._now())
        self._jobs[job.id] = job

        if not entries:
            job.mark_completed(self._now())
            LOGGER.info("No dictionary entries need embeddings", extra={"organization_id": str(organization_id)})
            return job.snapshot()

        task = asyncio.get_running_loop().create_task(self._run(job, entries))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))

        LOGGER.info(
            "Embedding job queued",
            extra={"job_id": job.id, "organization_id": str(organization_id), "total": len(entries)},
        )
        return job.snapshot()

    def get_job(self, job_id: str) -> Optional[EmbeddingJob]:
        self._evict_expired()
        job = self._jobs.get(job_id)
        return job.snapshot() if job else None

    async def wait_for_job(self, job_id: str) -> Optional[EmbeddingJob]:
        """Wait for a job's background task to finish and return its final snapshot."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get_job(job_id)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, job: _JobRecord, entries: Sequence[DictionaryEntryRecord]) -> None:
        job.mark_processing()
        for entry in entries:
            try:
                vector = await self.embedder.create_embedding(entry.phrase)
                if not await self.store.set_vector(entry.id, vector):
                    raise NotFoundError(f"Dictionary entry {entry.id} no longer exists")
                job.record_success()
            except Exception as e:
                LOGGER.warning(
                    "Embedding failed for dictionary entry",
                    extra={"job_id": job.id, "entry_id": str(entry.id), "error": str(e)},
                )
                job.record_failure(entry, str(e))

        job.mark_completed(self._now())
        snapshot = job.snapshot()
        if snapshot.success and self.cache is not None:
            self.cache.invalidate_prefix(organization_prefix(job.organization_id))
        LOGGER.info(
            "Embedding job completed",
            extra={"job_id": job.id, "success": snapshot.success, "failure": snapshot.failure},
        )

    def _evict_expired(self) -> None:
        cutoff = self._now() - self.retention
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.completed_at is not None and job.completed_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
