"""Tests for EmbeddingBatchQueue job lifecycle and failure isolation."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from adlex.core.exceptions import APIClientError
from adlex.schemas.dictionaries import EmbeddingJobStatus
from adlex.services.embeddings.batch_queue import EmbeddingBatchQueue
from adlex.services.similarity.cache import similarity_key


@pytest.fixture
def org_id():
    return uuid.uuid4()


def _embedder_failing_on(*phrases: str) -> AsyncMock:
    async def embed(text):
        if text in phrases:
            raise APIClientError(f"cannot embed {text}")
        return [0.1, 0.2, 0.3]

    embedder = AsyncMock()
    embedder.create_embedding = AsyncMock(side_effect=embed)
    return embedder


class TestEmbeddingBatchQueue:
    @pytest.mark.asyncio
    async def test_single_failure_is_isolated(self, dictionary_store, org_id):
        entries = [dictionary_store.add_entry(org_id, phrase) for phrase in ("一", "二", "三", "四")]
        queue = EmbeddingBatchQueue(dictionary_store, _embedder_failing_on("三"))

        job = await queue.enqueue_organization(org_id)
        assert job.total == 4
        assert job.status in (EmbeddingJobStatus.QUEUED, EmbeddingJobStatus.PROCESSING)

        final = await queue.wait_for_job(job.id)

        assert final.status == EmbeddingJobStatus.COMPLETED
        assert final.processed == final.total == 4
        assert final.success == 3
        assert final.failure == 1
        assert [(f.id, f.phrase) for f in final.failures] == [(entries[2].id, "三")]
        assert "cannot embed" in final.failures[0].error
        assert final.completed_at is not None
        assert dictionary_store.entries[entries[0].id].vector == (0.1, 0.2, 0.3)
        assert dictionary_store.entries[entries[2].id].vector is None

    @pytest.mark.asyncio
    async def test_only_entries_without_vectors_are_targeted(self, dictionary_store, mock_embedder, org_id):
        dictionary_store.add_entry(org_id, "済み", vector=[1.0, 0.0, 0.0])
        dictionary_store.add_entry(org_id, "未処理")
        dictionary_store.add_entry(uuid.uuid4(), "他社")
        queue = EmbeddingBatchQueue(dictionary_store, mock_embedder)

        job = await queue.enqueue_organization(org_id)
        await queue.wait_for_job(job.id)

        assert job.total == 1
        mock_embedder.create_embedding.assert_awaited_once_with("未処理")

    @pytest.mark.asyncio
    async def test_entry_ids_narrow_the_target(self, dictionary_store, mock_embedder, org_id):
        wanted = dictionary_store.add_entry(org_id, "対象")
        dictionary_store.add_entry(org_id, "対象外")
        queue = EmbeddingBatchQueue(dictionary_store, mock_embedder)

        job = await queue.enqueue_organization(org_id, [wanted.id])
        final = await queue.wait_for_job(job.id)

        assert final.total == 1
        assert dictionary_store.entries[wanted.id].vector is not None

    @pytest.mark.asyncio
    async def test_nothing_to_do_completes_immediately(self, dictionary_store, mock_embedder, org_id):
        queue = EmbeddingBatchQueue(dictionary_store, mock_embedder)

        job = await queue.enqueue_organization(org_id)

        assert job.status == EmbeddingJobStatus.COMPLETED
        assert job.total == job.processed == 0
        assert queue.get_job(job.id) == job

    @pytest.mark.asyncio
    async def test_deleted_entry_is_recorded_as_failure(self, dictionary_store, mock_embedder, org_id):
        entry = dictionary_store.add_entry(org_id, "消える")

        async def embed_and_delete(text):
            await dictionary_store.delete_entry(entry.id)
            return [0.5]

        mock_embedder.create_embedding.side_effect = embed_and_delete
        queue = EmbeddingBatchQueue(dictionary_store, mock_embedder)

        final = await queue.wait_for_job((await queue.enqueue_organization(org_id)).id)

        assert final.failure == 1
        assert final.processed == 1

    @pytest.mark.asyncio
    async def test_snapshots_are_immutable(self, dictionary_store, mock_embedder, org_id):
        dictionary_store.add_entry(org_id, "一")
        queue = EmbeddingBatchQueue(dictionary_store, mock_embedder)

        job = await queue.enqueue_organization(org_id)
        await queue.wait_for_job(job.id)

        assert job.processed == 0
        with pytest.raises(Exception):
            job.processed = 5

    def test_unknown_job_is_none(self, dictionary_store, mock_embedder):
        assert EmbeddingBatchQueue(dictionary_store, mock_embedder).get_job("missing") is None

    @pytest.mark.asyncio
    async def test_completed_jobs_expire_after_retention(self, dictionary_store, mock_embedder, org_id):
        now = {"value": datetime(2026, 1, 1, tzinfo=timezone.utc)}
        queue = EmbeddingBatchQueue(
            dictionary_store, mock_embedder, retention=timedelta(hours=24), now=lambda: now["value"]
        )

        job = await queue.enqueue_organization(org_id)
        now["value"] += timedelta(hours=23)
        assert queue.get_job(job.id) is not None
        now["value"] += timedelta(hours=2)
        assert queue.get_job(job.id) is None

    @pytest.mark.asyncio
    async def test_successful_job_invalidates_cached_similarity(self, dictionary_store, mock_embedder, cache, org_id):
        dictionary_store.add_entry(org_id, "一")
        key = similarity_key(org_id, "何かの文")
        cache.set(key, [])
        queue = EmbeddingBatchQueue(dictionary_store, mock_embedder, cache=cache)

        await queue.wait_for_job((await queue.enqueue_organization(org_id)).id)

        assert cache.get(key) is None
