"""Hybrid lexical + vector ranking of dictionary entries against a text."""

from collections.abc import Sequence
from typing import Optional, Protocol
from uuid import UUID

from adlex.core.config import SimilaritySettings
from adlex.schemas.dictionaries import DictionaryPhrase, RankedCandidate, SimilarityResult, VectorMatch
from adlex.services.similarity.cache import normalize_text
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DictionarySource(Protocol):
    async def list_phrases(self, organization_id: UUID) -> list[DictionaryPhrase]: ...

    async def search_similar(
        self,
        organization_id: UUID,
        query_vector: Sequence[float],
        min_similarity: float,
        limit: int,
    ) -> list[VectorMatch]: ...


class Embedder(Protocol):
    async def create_embedding(self, text: str) -> list[float]: ...


def trigrams(text: str) -> set[str]:
    """Character trigrams of the normalized, lower-cased text.

    Texts shorter than three characters yield themselves as a single gram.
    """
    value = normalize_text(text).lower()
    if len(value) < 3:
        return {value} if value else set()
    return {value[i:i + 3] for i in range(len(value) - 2)}


def lexical_similarity(phrase: str, text: str) -> float:
    """Share of the phrase's trigrams that also occur in the text.

    An exact substring match scores 1.0. Japanese copy has no word
    boundaries, so character trigrams stand in for words.
    """
    needle = normalize_text(phrase).lower()
    haystack = normalize_text(text).lower()
    if not needle or not haystack:
        return 0.0
    if needle in haystack:
        return 1.0
    phrase_grams = trigrams(needle)
    if not phrase_grams:
        return 0.0
    return len(phrase_grams & trigrams(haystack)) / len(phrase_grams)


class DictionarySimilarityResolver:
    """Rank an organization's dictionary entries by similarity to a text.

    Every entry gets a lexical score computed here. Entries with a stored
    vector are scored against the query embedding by the dictionary source,
    which only returns matches at or above the vector threshold. Entries pass
    when either score clears its threshold and are ordered by
    ``lexical_weight * lexical + vector_weight * vector``. The resolver keeps
    no state between calls.
    """

    def __init__(
        self,
        dictionary_source: DictionarySource,
        embedder: Optional[Embedder] = None,
        config: Optional[SimilaritySettings] = None,
    ):
        self.dictionary_source = dictionary_source
        self.embedder = embedder
        self.config = config or SimilaritySettings()

    async def resolve(self, text: str, organization_id: UUID) -> SimilarityResult:
        phrases = await self.dictionary_source.list_phrases(organization_id)
        if not phrases or not text.strip():
            return SimilarityResult()

        is_long = len(text) > self.config.long_text_length
        vector_threshold = (
            self.config.long_text_vector_threshold if is_long else self.config.vector_threshold
        )
        max_results = self.config.long_text_max_results if is_long else self.config.max_results

        vector_scores: dict[UUID, float] = {}
        degraded = False
        if self.embedder is not None and any(phrase.has_vector for phrase in phrases):
            query_vector = await self._embed_query(text, organization_id)
            if query_vector is None:
                degraded = True
            else:
                matches = await self.dictionary_source.search_similar(
                    organization_id, query_vector, vector_threshold, max_results
                )
                vector_scores = {match.id: match.similarity for match in matches}

        candidates = []
        for phrase in phrases:
            lexical = lexical_similarity(phrase.phrase, text)
            vector = vector_scores.get(phrase.id, 0.0)

            if lexical < self.config.lexical_threshold and phrase.id not in vector_scores:
                continue

            candidates.append(
                RankedCandidate(
                    id=phrase.id,
                    phrase=phrase.phrase,
                    category=phrase.category,
                    notes=phrase.notes,
                    lexical_score=lexical,
                    vector_score=vector,
                    combined_score=self.config.lexical_weight * lexical + self.config.vector_weight * vector,
                )
            )

        candidates.sort(key=lambda c: (-c.combined_score, -c.vector_score, -c.lexical_score))
        ranked = candidates[:max_results]

        LOGGER.info(
            "Dictionary similarity resolved",
            extra={
                "organization_id": str(organization_id),
                "entries": len(phrases),
                "candidates": len(ranked),
                "vector_matches": len(vector_scores),
                "degraded": degraded,
            },
        )
        return SimilarityResult(candidates=ranked, degraded=degraded)

    async def _embed_query(self, text: str, organization_id: UUID) -> Optional[list[float]]:
        """Embed the query text, or return None so ranking falls back to lexical scores."""
        if self.embedder is None:
            return None
        try:
            return await self.embedder.create_embedding(text[: self.config.embedding_input_limit])
        except Exception as e:
            LOGGER.warning(
                "Query embedding failed, continuing with lexical similarity only",
                extra={"organization_id": str(organization_id), "error": str(e)},
            )
            return None
