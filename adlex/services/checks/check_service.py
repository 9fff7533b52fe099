"""Check submission, cancellation and access-checked reads."""

from typing import Optional
from uuid import UUID

from adlex.core.exceptions import (
    AccessDeniedError,
    AppError,
    CheckStateError,
    NotFoundError,
    ValidationError,
    describe_failure,
)
from adlex.schemas.checks import CheckDetail, CheckRecord, CheckSubmission, InputType
from adlex.services.checks.access import can_view
from adlex.services.checks.queue_manager import AdmissionQueueManager
from adlex.store.check_store import CheckStore
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class CheckService:
    def __init__(self, store: CheckStore, queue: AdmissionQueueManager, max_text_length: int = 10000):
        self.store = store
        self.queue = queue
        self.max_text_length = max_text_length

    def _validate_text(self, text: Optional[str], field: str) -> str:
        if text is None or not text.strip():
            raise ValidationError(f"{field} must not be empty")
        if len(text) > self.max_text_length:
            raise ValidationError(f"{field} must be at most {self.max_text_length} characters")
        return text

    async def submit(
        self,
        *,
        user_id: UUID,
        organization_id: UUID,
        text: str,
        input_type: InputType | str = InputType.TEXT,
        extracted_text: Optional[str] = None,
    ) -> CheckSubmission:
        """Validate a submission, persist it as queued and admit it.

        Image checks carry the OCR output in ``extracted_text``; that is the
        text screened.

        Raises:
            ValidationError: bad input, unknown user or exhausted usage
            AppError: the check was created but could not be queued
        """
        try:
            input_type = InputType(input_type)
        except ValueError as e:
            raise ValidationError(f"Unsupported input type: {input_type}", original_error=e) from e

        self._validate_text(text, "text")
        if input_type == InputType.IMAGE:
            self._validate_text(extracted_text, "extracted_text")

        user = await self.store.get_user(user_id)
        if user is None:
            raise ValidationError("User not found")
        if user.organization_id != organization_id:
            raise AccessDeniedError("User does not belong to this organization")

        organization = await self.store.get_organization(organization_id)
        if organization is None:
            raise ValidationError("Organization not found")
        if not organization.has_remaining_checks:
            raise ValidationError("Organization has reached its check limit")

        check = await self.store.create_check(
            organization_id=organization_id,
            user_id=user_id,
            original_text=text,
            input_type=input_type,
            extracted_text=extracted_text,
        )

        try:
            position = self.queue.enqueue(check.id, check.analysis_text, organization_id, input_type)
        except Exception as e:
            LOGGER.error("Failed to enqueue check", exc_info=True, extra={"check_id": str(check.id)})
            await self.store.fail_check(check.id, describe_failure(e))
            raise AppError("Failed to start processing the check", original_error=e) from e

        return CheckSubmission(check=check, queue_position=position)

    async def _get_authorized(self, check_id: UUID, user_id: UUID) -> CheckRecord:
        check = await self.store.get_check(check_id)
        if check is None:
            raise NotFoundError(f"Check {check_id} not found")
        user = await self.store.get_user(user_id)
        if not can_view(user, check):
            raise AccessDeniedError("You do not have access to this check")
        return check

    async def get_detail(self, check_id: UUID, user_id: UUID) -> CheckDetail:
        await self._get_authorized(check_id, user_id)
        detail = await self.store.get_check_detail(check_id)
        if detail is None:
            raise NotFoundError(f"Check {check_id} not found")
        return detail

    async def cancel(self, check_id: UUID, user_id: UUID) -> CheckRecord:
        """Cancel a queued or processing check.

        A queued check leaves the wait list. A processing check keeps running
        but its result is discarded when it finishes.
        """
        check = await self._get_authorized(check_id, user_id)
        if check.status.is_terminal:
            raise CheckStateError(f"Check is already {check.status.value}")

        self.queue.remove(check_id)
        if not await self.store.cancel_check(check_id):
            raise CheckStateError("Check finished before it could be cancelled")

        LOGGER.info("Check cancelled", extra={"check_id": str(check_id), "user_id": str(user_id)})
        cancelled = await self.store.get_check(check_id)
        return cancelled if cancelled is not None else check
