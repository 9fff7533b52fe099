"""In-memory doubles of the store layer.

They expose the same async methods as ``CheckStore`` and ``DictionaryStore``
and publish change notifications the same way, so pipeline components can
be exercised without a database.
"""

import json
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import numpy as np

from adlex.schemas.checks import (
    ACTIVE_STATUSES,
    CheckChange,
    CheckDetail,
    CheckRecord,
    CheckStatus,
    DetectedViolation,
    InputType,
    ViolationRecord,
)
from adlex.schemas.dictionaries import (
    DictionaryCategory,
    DictionaryEntryRecord,
    DictionaryPhrase,
    EmbeddingStats,
    VectorMatch,
)
from adlex.schemas.users import OrganizationRecord, UserRecord, UserRole
from adlex.store.notifier import CheckChangeNotifier, CheckChangeSubscription


class InMemoryCheckStore:
    def __init__(self, notifier: Optional[CheckChangeNotifier] = None):
        self.notifier = notifier or CheckChangeNotifier()
        self.checks: dict[UUID, CheckRecord] = {}
        self.violations: dict[UUID, list[ViolationRecord]] = {}
        self.users: dict[UUID, UserRecord] = {}
        self.organizations: dict[UUID, OrganizationRecord] = {}
        self.complete_error: Optional[Exception] = None
        self.usage_error: Optional[Exception] = None
        self.transitions: list[tuple[UUID, CheckStatus]] = []

    # -- seeding helpers -------------------------------------------------

    def add_organization(self, max_checks: int = 100, used_checks: int = 0) -> OrganizationRecord:
        org = OrganizationRecord(id=uuid.uuid4(), name="Test Org", max_checks=max_checks, used_checks=used_checks)
        self.organizations[org.id] = org
        return org

    def add_user(self, organization_id: Optional[UUID], role: UserRole = UserRole.USER) -> UserRecord:
        user = UserRecord(
            id=uuid.uuid4(),
            organization_id=organization_id,
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            role=role,
        )
        self.users[user.id] = user
        return user

    def put_check(self, **fields) -> CheckRecord:
        fields.setdefault("id", uuid.uuid4())
        fields.setdefault("status", CheckStatus.QUEUED)
        fields.setdefault("original_text", "テスト")
        check = CheckRecord(**fields)
        self.checks[check.id] = check
        return check

    # -- store interface -------------------------------------------------

    def subscribe(self, check_id: UUID) -> CheckChangeSubscription:
        return self.notifier.subscribe(check_id)

    async def get_check(self, check_id: UUID) -> Optional[CheckRecord]:
        return self.checks.get(check_id)

    async def get_check_detail(self, check_id: UUID) -> Optional[CheckDetail]:
        check = self.checks.get(check_id)
        if check is None:
            return None
        violations = sorted(self.violations.get(check_id, []), key=lambda v: (v.start_pos, v.end_pos))
        return CheckDetail(check=check, violations=violations)

    async def get_user(self, user_id: UUID) -> Optional[UserRecord]:
        return self.users.get(user_id)

    async def get_organization(self, organization_id: UUID) -> Optional[OrganizationRecord]:
        return self.organizations.get(organization_id)

    async def create_check(
        self,
        *,
        organization_id: UUID,
        user_id: UUID,
        original_text: str,
        input_type: InputType = InputType.TEXT,
        extracted_text: Optional[str] = None,
    ) -> CheckRecord:
        check = self.put_check(
            organization_id=organization_id,
            user_id=user_id,
            original_text=original_text,
            input_type=input_type,
            extracted_text=extracted_text,
            created_at=datetime.now(timezone.utc),
        )
        self.notifier.publish(CheckChange.from_record(check))
        return check

    def _transition(self, check_id: UUID, from_statuses, to_status: CheckStatus, **values) -> bool:
        check = self.checks.get(check_id)
        if check is None or check.status not in from_statuses:
            return False
        if to_status.is_terminal:
            values["completed_at"] = datetime.now(timezone.utc)
        updated = check.model_copy(update={"status": to_status, **values})
        self.checks[check_id] = updated
        self.transitions.append((check_id, to_status))
        self.notifier.publish(CheckChange.from_record(updated))
        return True

    async def mark_processing(self, check_id: UUID) -> bool:
        return self._transition(check_id, {CheckStatus.QUEUED}, CheckStatus.PROCESSING)

    async def complete_check(
        self,
        check_id: UUID,
        modified_text: str,
        violations: Sequence[DetectedViolation],
    ) -> bool:
        if self.complete_error is not None:
            raise self.complete_error
        check = self.checks.get(check_id)
        if check is None or check.status != CheckStatus.PROCESSING:
            return False
        self.violations[check_id] = [
            ViolationRecord(
                id=uuid.uuid4(),
                check_id=check_id,
                start_pos=v.start,
                end_pos=v.end,
                reason=v.reason,
                dictionary_id=v.dictionary_id,
            )
            for v in violations
        ]
        return self._transition(
            check_id, {CheckStatus.PROCESSING}, CheckStatus.COMPLETED, modified_text=modified_text
        )

    async def fail_check(self, check_id: UUID, error_message: str) -> bool:
        return self._transition(check_id, ACTIVE_STATUSES, CheckStatus.FAILED, error_message=error_message)

    async def cancel_check(self, check_id: UUID, error_message: str = "Cancelled by user") -> bool:
        return self._transition(check_id, ACTIVE_STATUSES, CheckStatus.CANCELLED, error_message=error_message)

    async def increment_usage(self, organization_id: UUID) -> None:
        if self.usage_error is not None:
            raise self.usage_error
        org = self.organizations.get(organization_id)
        if org is not None:
            self.organizations[organization_id] = org.model_copy(update={"used_checks": org.used_checks + 1})


class InMemoryDictionaryStore:
    def __init__(self):
        self.entries: dict[UUID, DictionaryEntryRecord] = {}
        self.list_calls = 0
        self.search_calls: list[tuple] = []

    def add_entry(
        self,
        organization_id: UUID,
        phrase: str,
        category: DictionaryCategory = DictionaryCategory.NG,
        vector: Optional[Sequence[float]] = None,
        notes: Optional[str] = None,
    ) -> DictionaryEntryRecord:
        entry = DictionaryEntryRecord(
            id=uuid.uuid4(),
            organization_id=organization_id,
            phrase=phrase,
            category=category,
            notes=notes,
            vector=tuple(vector) if vector is not None else None,
        )
        self.entries[entry.id] = entry
        return entry

    def _org_entries(self, organization_id: UUID) -> list[DictionaryEntryRecord]:
        return [e for e in self.entries.values() if e.organization_id == organization_id]

    async def list_phrases(self, organization_id: UUID) -> list[DictionaryPhrase]:
        self.list_calls += 1
        return [
            DictionaryPhrase(id=e.id, phrase=e.phrase, category=e.category, notes=e.notes, has_vector=e.has_vector)
            for e in self._org_entries(organization_id)
        ]

    async def search_similar(
        self,
        organization_id: UUID,
        query_vector: Sequence[float],
        min_similarity: float,
        limit: int,
    ) -> list[VectorMatch]:
        self.search_calls.append((organization_id, tuple(query_vector), min_similarity, limit))
        query = np.asarray(query_vector, dtype=np.float64)
        matches = []
        for entry in self._org_entries(organization_id):
            if entry.vector is None or len(entry.vector) != query.shape[0]:
                continue
            vector = np.asarray(entry.vector, dtype=np.float64)
            denom = float(np.linalg.norm(vector) * np.linalg.norm(query))
            similarity = float(np.dot(vector, query) / denom) if denom else 0.0
            if similarity >= min_similarity:
                matches.append(VectorMatch(id=entry.id, similarity=similarity))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]

    async def get_entry(self, entry_id: UUID) -> Optional[DictionaryEntryRecord]:
        return self.entries.get(entry_id)

    async def list_missing_vectors(
        self,
        organization_id: UUID,
        entry_ids: Optional[Sequence[UUID]] = None,
    ) -> list[DictionaryEntryRecord]:
        return [
            e
            for e in self.entries.values()
            if e.organization_id == organization_id
            and e.vector is None
            and (not entry_ids or e.id in entry_ids)
        ]

    async def set_vector(self, entry_id: UUID, vector: Sequence[float]) -> bool:
        entry = self.entries.get(entry_id)
        if entry is None:
            return False
        self.entries[entry_id] = entry.model_copy(update={"vector": tuple(vector)})
        return True

    async def create_entry(
        self,
        *,
        organization_id: UUID,
        phrase: str,
        category: DictionaryCategory,
        notes: Optional[str] = None,
        vector: Optional[Sequence[float]] = None,
    ) -> DictionaryEntryRecord:
        return self.add_entry(organization_id, phrase, category, vector, notes)

    async def update_entry(self, entry_id: UUID, **fields) -> Optional[DictionaryEntryRecord]:
        entry = self.entries.get(entry_id)
        if entry is None:
            return None
        if fields.get("vector") is not None:
            fields["vector"] = tuple(fields["vector"])
        updated = entry.model_copy(update=fields)
        self.entries[entry_id] = updated
        return updated

    async def delete_entry(self, entry_id: UUID) -> bool:
        return self.entries.pop(entry_id, None) is not None

    async def embedding_stats(self, organization_id: UUID) -> EmbeddingStats:
        entries = self._org_entries(organization_id)
        return EmbeddingStats.from_counts(len(entries), sum(1 for e in entries if e.vector is not None))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def tool_call_response(arguments: Dict[str, Any], name: str = "apply_yakukiho_rules") -> Dict[str, Any]:
    """Build a chat-completion body whose message carries one tool call."""
    return {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_1",
                            "type": "function",
                            "function": {"name": name, "arguments": json.dumps(arguments, ensure_ascii=False)},
                        }
                    ],
                }
            }
        ]
    }


def violation_args(text: str, phrase: str, replacement: str, dictionary_id: Any = None) -> Dict[str, Any]:
    """Tool-call arguments flagging the first occurrence of ``phrase``."""
    start = text.index(phrase)
    violation: Dict[str, Any] = {"start": start, "end": start + len(phrase), "reason": f"{phrase} は誇大表現です"}
    if dictionary_id is not None:
        violation["dictionaryId"] = str(dictionary_id)
    return {"modified": text.replace(phrase, replacement), "violations": [violation]}
