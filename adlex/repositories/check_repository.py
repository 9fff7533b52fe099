"""Repository for checks and their violations."""

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adlex.database.models import Check, Violation
from adlex.repositories.base_repository import BaseRepository


class CheckRepository(BaseRepository[Check]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, Check)

    async def get_active(self, check_id: UUID) -> Optional[Check]:
        """Get a check unless it has been soft-deleted."""
        try:
            query = select(Check).where(Check.id == check_id, Check.deleted_at.is_(None))
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error retrieving check {check_id}: {str(e)}", exc_info=True)
            raise

    async def transition(
        self,
        check_id: UUID,
        from_statuses: Iterable[str],
        to_status: str,
        **values,
    ) -> Optional[Check]:
        """Move a check to ``to_status`` only if it is currently in ``from_statuses``.

        The guard lives in the UPDATE's WHERE clause, so two concurrent callers
        can never both succeed.

        Returns:
            The updated row, or None when the guard did not match.
        """
        if to_status in {"completed", "failed", "cancelled"}:
            values.setdefault("completed_at", datetime.now(timezone.utc))
        try:
            stmt = (
                update(Check)
                .where(
                    Check.id == check_id,
                    Check.deleted_at.is_(None),
                    Check.status.in_(list(from_statuses)),
                )
                .values(status=to_status, **values)
                .returning(Check)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error moving check {check_id} to {to_status}: {str(e)}",
                exc_info=True,
            )
            raise

    async def add_violations(self, check_id: UUID, rows: Sequence[dict]) -> None:
        """Batch insert violations for one check."""
        if not rows:
            return
        try:
            await self.session.execute(
                insert(Violation),
                [{"check_id": check_id, **row} for row in rows],
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error inserting violations for check {check_id}: {str(e)}", exc_info=True)
            raise

    async def list_violations(self, check_id: UUID) -> list[Violation]:
        try:
            query = (
                select(Violation)
                .where(Violation.check_id == check_id)
                .order_by(Violation.start_pos, Violation.end_pos)
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing violations for check {check_id}: {str(e)}", exc_info=True)
            raise
