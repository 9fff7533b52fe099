"""Repository for organization phrase dictionaries."""

from collections.abc import Sequence
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adlex.database.models import Dictionary
from adlex.repositories.base_repository import BaseRepository


class DictionaryRepository(BaseRepository[Dictionary]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, Dictionary)

    async def list_phrases(self, organization_id: UUID) -> list[Any]:
        """Phrase columns of every entry, with a ``has_vector`` flag instead of the vector."""
        try:
            query = (
                select(
                    Dictionary.id,
                    Dictionary.phrase,
                    Dictionary.category,
                    Dictionary.notes,
                    Dictionary.vector.is_not(None).label("has_vector"),
                )
                .where(Dictionary.organization_id == organization_id)
                .order_by(Dictionary.created_at, Dictionary.id)
            )
            result = await self.session.execute(query)
            return list(result.all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing dictionary for {organization_id}: {str(e)}", exc_info=True)
            raise

    async def search_similar(
        self,
        organization_id: UUID,
        query_vector: Sequence[float],
        min_similarity: float,
        limit: int,
    ) -> list[tuple[UUID, float]]:
        """Entries whose cosine similarity to ``query_vector`` is at least ``min_similarity``.

        Returns:
            List of (entry id, similarity) tuples, most similar first
        """
        embedding = list(query_vector)
        try:
            query = (
                select(
                    Dictionary.id,
                    Dictionary.vector.cosine_distance(embedding).label("distance"),
                )
                .where(
                    Dictionary.organization_id == organization_id,
                    Dictionary.vector.is_not(None),
                    Dictionary.vector.cosine_distance(embedding) <= 1 - min_similarity,
                )
                .order_by("distance")
                .limit(limit)
            )
            result = await self.session.execute(query)
            return [(row.id, 1.0 - float(row.distance)) for row in result]
        except SQLAlchemyError as e:
            self.logger.error(f"Error searching similar entries for {organization_id}: {str(e)}", exc_info=True)
            raise

    async def list_missing_vectors(
        self,
        organization_id: UUID,
        entry_ids: Optional[Sequence[UUID]] = None,
    ) -> list[Dictionary]:
        """Entries that still need an embedding, optionally restricted to ``entry_ids``."""
        try:
            query = select(Dictionary).where(
                Dictionary.organization_id == organization_id,
                Dictionary.vector.is_(None),
            )
            if entry_ids:
                query = query.where(Dictionary.id.in_(list(entry_ids)))
            result = await self.session.execute(query.order_by(Dictionary.created_at, Dictionary.id))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing entries without vectors: {str(e)}", exc_info=True)
            raise

    async def set_vector(self, entry_id: UUID, vector: Sequence[float]) -> bool:
        try:
            stmt = (
                update(Dictionary)
                .where(Dictionary.id == entry_id)
                .values(vector=list(vector))
                .returning(Dictionary.id)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error storing vector for entry {entry_id}: {str(e)}", exc_info=True)
            raise

    async def count_with_vector(self, organization_id: UUID) -> int:
        try:
            query = select(func.count()).select_from(Dictionary).where(
                Dictionary.organization_id == organization_id,
                Dictionary.vector.is_not(None),
            )
            result = await self.session.execute(query)
            return result.scalar_one()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting vectors for {organization_id}: {str(e)}", exc_info=True)
            raise
