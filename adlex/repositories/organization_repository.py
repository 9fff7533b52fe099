from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adlex.database.models import Organization, User
from adlex.repositories.base_repository import BaseRepository


class OrganizationRepository(BaseRepository[Organization]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, Organization)

    async def increment_usage(self, organization_id: UUID) -> bool:
        """Atomically add one to the organization's used check counter."""
        try:
            stmt = (
                update(Organization)
                .where(Organization.id == organization_id)
                .values(used_checks=Organization.used_checks + 1)
                .returning(Organization.id)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error incrementing usage for {organization_id}: {str(e)}", exc_info=True)
            raise


class UserRepository(BaseRepository[User]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, User)
