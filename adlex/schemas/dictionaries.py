"""Dictionary entry, similarity candidate and embedding job records."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DictionaryCategory(str, Enum):
    NG = "NG"
    ALLOW = "ALLOW"


class DictionaryEntryRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    organization_id: UUID
    phrase: str
    category: DictionaryCategory = DictionaryCategory.NG
    notes: str | None = None
    vector: tuple[float, ...] | None = None

    @property
    def has_vector(self) -> bool:
        return self.vector is not None


class DictionaryPhrase(BaseModel):
    """Entry without its vector, as read for lexical matching."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    phrase: str
    category: DictionaryCategory = DictionaryCategory.NG
    notes: str | None = None
    has_vector: bool = False


class VectorMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    similarity: float


class RankedCandidate(BaseModel):
    """Dictionary entry judged similar to a submitted text."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    phrase: str
    category: DictionaryCategory
    notes: str | None = None
    lexical_score: float = Field(ge=0.0, le=1.0)
    vector_score: float = Field(default=0.0, description="Cosine similarity, 0 below the vector threshold")
    combined_score: float


class SimilarityResult(BaseModel):
    """Ranked candidates plus whether the vector signal was missing.

    ``degraded`` is set when entries had vectors but the query text could not
    be embedded, so the ranking is lexical only.
    """

    model_config = ConfigDict(frozen=True)

    candidates: list[RankedCandidate] = Field(default_factory=list)
    degraded: bool = False


class EmbeddingJobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"


class EmbeddingFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    phrase: str
    error: str


class EmbeddingJob(BaseModel):
    """Snapshot of a background embedding regeneration job."""

    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: UUID
    status: EmbeddingJobStatus
    total: int
    processed: int = 0
    success: int = 0
    failure: int = 0
    failures: tuple[EmbeddingFailure, ...] = ()
    started_at: datetime
    completed_at: datetime | None = None


class EmbeddingStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_items: int
    items_with_embedding: int
    items_without_embedding: int
    embedding_coverage_rate: float = Field(description="Percentage of entries with a vector, one decimal")

    @classmethod
    def from_counts(cls, total: int, with_vector: int) -> "EmbeddingStats":
        return cls(
            total_items=total,
            items_with_embedding=with_vector,
            items_without_embedding=total - with_vector,
            embedding_coverage_rate=round(with_vector / total * 100, 1) if total else 0.0,
        )
