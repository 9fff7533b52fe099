"""Row to record mapping at the store boundary."""

from typing import Any

import numpy as np

from adlex.database.models import Check, Dictionary, Organization, User, Violation
from adlex.schemas.checks import CheckRecord, CheckStatus, InputType, ViolationRecord
from adlex.schemas.dictionaries import DictionaryCategory, DictionaryEntryRecord, DictionaryPhrase
from adlex.schemas.users import OrganizationRecord, UserRecord, UserRole


def to_check_record(row: Check) -> CheckRecord:
    return CheckRecord(
        id=row.id,
        organization_id=row.organization_id,
        user_id=row.user_id,
        input_type=InputType(row.input_type),
        status=CheckStatus(row.status),
        original_text=row.original_text,
        extracted_text=row.extracted_text,
        modified_text=row.modified_text,
        error_message=row.error_message,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


def to_violation_record(row: Violation) -> ViolationRecord:
    return ViolationRecord(
        id=row.id,
        check_id=row.check_id,
        start_pos=row.start_pos,
        end_pos=row.end_pos,
        reason=row.reason,
        dictionary_id=row.dictionary_id,
    )


def to_dictionary_record(row: Dictionary) -> DictionaryEntryRecord:
    # pgvector hands back numpy arrays
    vector = tuple(np.asarray(row.vector, dtype=np.float64).tolist()) if row.vector is not None else None
    return DictionaryEntryRecord(
        id=row.id,
        organization_id=row.organization_id,
        phrase=row.phrase,
        category=DictionaryCategory(row.category),
        notes=row.notes,
        vector=vector,
    )


def to_dictionary_phrase(row: Any) -> DictionaryPhrase:
    return DictionaryPhrase(
        id=row.id,
        phrase=row.phrase,
        category=DictionaryCategory(row.category),
        notes=row.notes,
        has_vector=bool(row.has_vector),
    )


def to_user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        organization_id=row.organization_id,
        email=row.email,
        role=UserRole(row.role),
    )


def to_organization_record(row: Organization) -> OrganizationRecord:
    return OrganizationRecord(
        id=row.id,
        name=row.name,
        max_checks=row.max_checks,
        used_checks=row.used_checks,
    )
