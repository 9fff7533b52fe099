"""Dictionary entry persistence."""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adlex.core.exceptions import DatabaseError
from adlex.repositories.dictionary_repository import DictionaryRepository
from adlex.schemas.dictionaries import (
    DictionaryCategory,
    DictionaryEntryRecord,
    DictionaryPhrase,
    EmbeddingStats,
    VectorMatch,
)
from adlex.store.mappers import to_dictionary_phrase, to_dictionary_record


class DictionaryStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as e:
                raise DatabaseError(f"Database operation failed: {e}", original_error=e) from e

    async def list_phrases(self, organization_id: UUID) -> list[DictionaryPhrase]:
        async with self._transaction() as session:
            rows = await DictionaryRepository(session).list_phrases(organization_id)
            return [to_dictionary_phrase(row) for row in rows]

    async def search_similar(
        self,
        organization_id: UUID,
        query_vector: Sequence[float],
        min_similarity: float,
        limit: int,
    ) -> list[VectorMatch]:
        """Vector scores computed by the database for entries above ``min_similarity``."""
        async with self._transaction() as session:
            matches = await DictionaryRepository(session).search_similar(
                organization_id, query_vector, min_similarity, limit
            )
        return [VectorMatch(id=entry_id, similarity=similarity) for entry_id, similarity in matches]

    async def get_entry(self, entry_id: UUID) -> Optional[DictionaryEntryRecord]:
        async with self._transaction() as session:
            row = await DictionaryRepository(session).get_by_id(entry_id)
            return to_dictionary_record(row) if row else None

    async def list_missing_vectors(
        self,
        organization_id: UUID,
        entry_ids: Optional[Sequence[UUID]] = None,
    ) -> list[DictionaryEntryRecord]:
        async with self._transaction() as session:
            rows = await DictionaryRepository(session).list_missing_vectors(organization_id, entry_ids)
            return [to_dictionary_record(row) for row in rows]

    async def set_vector(self, entry_id: UUID, vector: Sequence[float]) -> bool:
        async with self._transaction() as session:
            return await DictionaryRepository(session).set_vector(entry_id, vector)

    async def create_entry(
        self,
        *,
        organization_id: UUID,
        phrase: str,
        category: DictionaryCategory,
        notes: Optional[str] = None,
        vector: Optional[Sequence[float]] = None,
    ) -> DictionaryEntryRecord:
        async with self._transaction() as session:
            row = await DictionaryRepository(session).create(
                organization_id=organization_id,
                phrase=phrase,
                category=category.value,
                notes=notes,
                vector=list(vector) if vector is not None else None,
            )
            return to_dictionary_record(row)

    async def update_entry(self, entry_id: UUID, **fields) -> Optional[DictionaryEntryRecord]:
        """Update phrase/category/notes/vector; an explicit ``vector=None`` clears it."""
        if "category" in fields and isinstance(fields["category"], DictionaryCategory):
            fields["category"] = fields["category"].value
        if fields.get("vector") is not None:
            fields["vector"] = list(fields["vector"])
        async with self._transaction() as session:
            row = await DictionaryRepository(session).update(entry_id, **fields)
            return to_dictionary_record(row) if row else None

    async def delete_entry(self, entry_id: UUID) -> bool:
        async with self._transaction() as session:
            return await DictionaryRepository(session).delete(entry_id)

    async def embedding_stats(self, organization_id: UUID) -> EmbeddingStats:
        async with self._transaction() as session:
            repo = DictionaryRepository(session)
            total = await repo.count({"organization_id": organization_id})
            with_vector = await repo.count_with_vector(organization_id)
        return EmbeddingStats.from_counts(total, with_vector)
