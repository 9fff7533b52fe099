"""Typed check and violation records.

Rows never leave the store layer; every component above it works on these
immutable models.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CheckStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CheckStatus.COMPLETED, CheckStatus.FAILED, CheckStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({CheckStatus.QUEUED, CheckStatus.PROCESSING})


class InputType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class CheckRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    organization_id: UUID
    user_id: UUID
    input_type: InputType = InputType.TEXT
    status: CheckStatus
    original_text: str
    extracted_text: str | None = None
    modified_text: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def analysis_text(self) -> str:
        """Text the pipeline screens: OCR output for images, the submission otherwise."""
        if self.input_type == InputType.IMAGE and self.extracted_text:
            return self.extracted_text
        return self.original_text


class ViolationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    check_id: UUID
    start_pos: int
    end_pos: int
    reason: str
    dictionary_id: UUID | None = None


class CheckDetail(BaseModel):
    """A check together with its persisted violations."""

    model_config = ConfigDict(frozen=True)

    check: CheckRecord
    violations: list[ViolationRecord] = Field(default_factory=list)


class DetectedViolation(BaseModel):
    """One finding as reported by the violation detector.

    Accepts both ``start``/``end``/``dictionaryId`` and the snake_case
    ``start_pos``/``end_pos``/``dictionary_id`` spellings models tend to mix.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start: int = Field(validation_alias=AliasChoices("start", "start_pos"))
    end: int = Field(validation_alias=AliasChoices("end", "end_pos"))
    reason: str = Field(default="", description="Why the span violates the regulations")
    dictionary_id: UUID | None = Field(
        default=None, validation_alias=AliasChoices("dictionary_id", "dictionaryId")
    )

    def clamp(self, text_length: int) -> "DetectedViolation":
        """Return a copy whose offsets satisfy 0 <= start <= end <= text_length."""
        start = min(max(self.start, 0), text_length)
        end = min(max(self.end, start), text_length)
        if (start, end) == (self.start, self.end):
            return self
        return self.model_copy(update={"start": start, "end": end})


class DetectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    modified: str
    violations: list[DetectedViolation] = Field(default_factory=list)


class CheckChange(BaseModel):
    """Notification emitted after a check row is committed."""

    model_config = ConfigDict(frozen=True)

    check_id: UUID
    status: CheckStatus
    input_type: InputType = InputType.TEXT
    extracted_text: str | None = None
    error_message: str | None = None

    @classmethod
    def from_record(cls, record: CheckRecord) -> "CheckChange":
        return cls(
            check_id=record.id,
            status=record.status,
            input_type=record.input_type,
            extracted_text=record.extracted_text,
            error_message=record.error_message,
        )


class QueueStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    queue_length: int
    processing_count: int
    max_concurrent: int


class CheckSubmission(BaseModel):
    """A freshly created check and where it landed in the admission queue."""

    model_config = ConfigDict(frozen=True)

    check: CheckRecord
    queue_position: int | None = Field(default=None, description="1-based wait position, None if started")
