"""Dictionary administration: edits, creation-time embeddings and coverage stats."""

from typing import Optional, Protocol
from uuid import UUID

from adlex.core.exceptions import NotFoundError, ValidationError
from adlex.schemas.dictionaries import DictionaryCategory, DictionaryEntryRecord, EmbeddingStats
from adlex.services.similarity.cache import TTLCache, organization_prefix
from adlex.store.dictionary_store import DictionaryStore
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Embedder(Protocol):
    async def create_embedding(self, text: str) -> list[float]: ...


class DictionaryService:
    """Every edit drops the organization's cached similarity results."""

    def __init__(self, store: DictionaryStore, embedder: Embedder, cache: TTLCache):
        self.store = store
        self.embedder = embedder
        self.cache = cache

    async def _embed(self, phrase: str) -> Optional[list[float]]:
        try:
            return await self.embedder.create_embedding(phrase)
        except Exception as e:
            LOGGER.warning(
                "Embedding generation failed, entry saved without vector",
                extra={"phrase": phrase[:50], "error": str(e)},
            )
            return None

    @staticmethod
    def _clean_phrase(phrase: str) -> str:
        phrase = (phrase or "").strip()
        if not phrase:
            raise ValidationError("phrase must not be empty")
        return phrase

    async def create_entry(
        self,
        organization_id: UUID,
        phrase: str,
        category: DictionaryCategory | str = DictionaryCategory.NG,
        notes: Optional[str] = None,
    ) -> DictionaryEntryRecord:
        phrase = self._clean_phrase(phrase)
        category = DictionaryCategory(category)
        vector = await self._embed(phrase)
        entry = await self.store.create_entry(
            organization_id=organization_id,
            phrase=phrase,
            category=category,
            notes=notes,
            vector=vector,
        )
        self.cache.invalidate_prefix(organization_prefix(organization_id))
        LOGGER.info(
            "Dictionary entry created",
            extra={"entry_id": str(entry.id), "has_vector": entry.has_vector},
        )
        return entry

    async def update_entry(
        self,
        entry_id: UUID,
        *,
        phrase: Optional[str] = None,
        category: DictionaryCategory | str | None = None,
        notes: Optional[str] = None,
    ) -> DictionaryEntryRecord:
        """Apply an edit; a changed phrase gets a fresh embedding (or none if that fails)."""
        existing = await self.store.get_entry(entry_id)
        if existing is None:
            raise NotFoundError(f"Dictionary entry {entry_id} not found")

        fields: dict = {}
        if phrase is not None:
            phrase = self._clean_phrase(phrase)
            if phrase != existing.phrase:
                fields["phrase"] = phrase
                fields["vector"] = await self._embed(phrase)
        if category is not None:
            fields["category"] = DictionaryCategory(category)
        if notes is not None:
            fields["notes"] = notes

        if not fields:
            return existing

        updated = await self.store.update_entry(entry_id, **fields)
        if updated is None:
            raise NotFoundError(f"Dictionary entry {entry_id} not found")
        self.cache.invalidate_prefix(organization_prefix(existing.organization_id))
        return updated

    async def delete_entry(self, entry_id: UUID) -> None:
        existing = await self.store.get_entry(entry_id)
        if existing is None or not await self.store.delete_entry(entry_id):
            raise NotFoundError(f"Dictionary entry {entry_id} not found")
        self.cache.invalidate_prefix(organization_prefix(existing.organization_id))

    async def embedding_stats(self, organization_id: UUID) -> EmbeddingStats:
        return await self.store.embedding_stats(organization_id)
