"""User and organization records used for authorization decisions."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class UserRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    organization_id: UUID | None
    email: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class OrganizationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str
    max_checks: int
    used_checks: int

    @property
    def has_remaining_checks(self) -> bool:
        return self.used_checks < self.max_checks
