"""Check, violation and usage persistence with exactly-once status transitions."""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adlex.core.exceptions import DatabaseError
from adlex.repositories.check_repository import CheckRepository
from adlex.repositories.organization_repository import OrganizationRepository, UserRepository
from adlex.schemas.checks import (
    ACTIVE_STATUSES,
    CheckChange,
    CheckDetail,
    CheckRecord,
    CheckStatus,
    DetectedViolation,
    InputType,
)
from adlex.schemas.users import OrganizationRecord, UserRecord
from adlex.store.mappers import (
    to_check_record,
    to_organization_record,
    to_user_record,
    to_violation_record,
)
from adlex.store.notifier import CheckChangeNotifier, CheckChangeSubscription
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)

_ACTIVE = [status.value for status in ACTIVE_STATUSES]


class CheckStore:
    """Session-per-operation facade returning typed records.

    Every committed status change is published to the notifier so streaming
    subscribers observe it.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        notifier: CheckChangeNotifier,
    ):
        self._session_maker = session_maker
        self.notifier = notifier

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as e:
                raise DatabaseError(f"Database operation failed: {e}", original_error=e) from e

    def subscribe(self, check_id: UUID) -> CheckChangeSubscription:
        return self.notifier.subscribe(check_id)

    async def get_check(self, check_id: UUID) -> Optional[CheckRecord]:
        async with self._transaction() as session:
            row = await CheckRepository(session).get_active(check_id)
            return to_check_record(row) if row else None

    async def get_check_detail(self, check_id: UUID) -> Optional[CheckDetail]:
        async with self._transaction() as session:
            repo = CheckRepository(session)
            row = await repo.get_active(check_id)
            if row is None:
                return None
            violations = await repo.list_violations(check_id)
            return CheckDetail(
                check=to_check_record(row),
                violations=[to_violation_record(v) for v in violations],
            )

    async def get_user(self, user_id: UUID) -> Optional[UserRecord]:
        async with self._transaction() as session:
            row = await UserRepository(session).get_by_id(user_id)
            return to_user_record(row) if row else None

    async def get_organization(self, organization_id: UUID) -> Optional[OrganizationRecord]:
        async with self._transaction() as session:
            row = await OrganizationRepository(session).get_by_id(organization_id)
            return to_organization_record(row) if row else None

    async def create_check(
        self,
        *,
        organization_id: UUID,
        user_id: UUID,
        original_text: str,
        input_type: InputType = InputType.TEXT,
        extracted_text: Optional[str] = None,
    ) -> CheckRecord:
        async with self._transaction() as session:
            row = await CheckRepository(session).create(
                organization_id=organization_id,
                user_id=user_id,
                original_text=original_text,
                input_type=input_type.value,
                extracted_text=extracted_text,
                status=CheckStatus.QUEUED.value,
            )
            record = to_check_record(row)
        LOGGER.info("Check created", extra={"check_id": str(record.id), "organization_id": str(organization_id)})
        self.notifier.publish(CheckChange.from_record(record))
        return record

    async def _transition(
        self,
        check_id: UUID,
        from_statuses: Sequence[str],
        to_status: CheckStatus,
        **values,
    ) -> Optional[CheckRecord]:
        async with self._transaction() as session:
            row = await CheckRepository(session).transition(check_id, from_statuses, to_status.value, **values)
            record = to_check_record(row) if row else None
        if record is None:
            LOGGER.info(
                "Check transition skipped",
                extra={"check_id": str(check_id), "to_status": to_status.value},
            )
            return None
        self.notifier.publish(CheckChange.from_record(record))
        return record

    async def mark_processing(self, check_id: UUID) -> bool:
        record = await self._transition(check_id, [CheckStatus.QUEUED.value], CheckStatus.PROCESSING)
        return record is not None

    async def complete_check(
        self,
        check_id: UUID,
        modified_text: str,
        violations: Sequence[DetectedViolation],
    ) -> bool:
        """Persist violations and the completed status in one transaction."""
        async with self._transaction() as session:
            repo = CheckRepository(session)
            row = await repo.transition(
                check_id,
                [CheckStatus.PROCESSING.value],
                CheckStatus.COMPLETED.value,
                modified_text=modified_text,
                error_message=None,
            )
            if row is None:
                record = None
            else:
                await repo.add_violations(
                    check_id,
                    [
                        {
                            "start_pos": v.start,
                            "end_pos": v.end,
                            "reason": v.reason,
                            "dictionary_id": v.dictionary_id,
                        }
                        for v in violations
                    ],
                )
                record = to_check_record(row)
        if record is None:
            LOGGER.info("Completion discarded, check is no longer processing", extra={"check_id": str(check_id)})
            return False
        LOGGER.info(
            "Check completed",
            extra={"check_id": str(check_id), "violation_count": len(violations)},
        )
        self.notifier.publish(CheckChange.from_record(record))
        return True

    async def fail_check(self, check_id: UUID, error_message: str) -> bool:
        record = await self._transition(check_id, _ACTIVE, CheckStatus.FAILED, error_message=error_message)
        return record is not None

    async def cancel_check(self, check_id: UUID, error_message: str = "Cancelled by user") -> bool:
        record = await self._transition(check_id, _ACTIVE, CheckStatus.CANCELLED, error_message=error_message)
        return record is not None

    async def increment_usage(self, organization_id: UUID) -> None:
        async with self._transaction() as session:
            found = await OrganizationRepository(session).increment_usage(organization_id)
        if not found:
            LOGGER.warning("Usage increment matched no organization", extra={"organization_id": str(organization_id)})
