from typing import Optional

from adlex.schemas.checks import CheckRecord
from adlex.schemas.users import UserRecord


def can_view(user: Optional[UserRecord], check: CheckRecord) -> bool:
    """Owners and organization admins may view a check of their own organization."""
    if user is None or user.organization_id != check.organization_id:
        return False
    return user.is_admin or user.id == check.user_id
