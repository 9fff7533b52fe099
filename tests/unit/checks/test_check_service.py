"""Tests for CheckService submission, cancellation and detail reads."""

import uuid
from unittest.mock import MagicMock

import pytest

from adlex.core.exceptions import AccessDeniedError, AppError, CheckStateError, NotFoundError, ValidationError
from adlex.schemas.checks import CheckStatus, InputType
from adlex.services.checks.check_service import CheckService


@pytest.fixture
def queue() -> MagicMock:
    queue = MagicMock()
    queue.enqueue.return_value = None
    queue.remove.return_value = False
    return queue


@pytest.fixture
def service(check_store, queue) -> CheckService:
    return CheckService(check_store, queue, max_text_length=100)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_creates_queued_check_and_enqueues_it(self, service, queue, check_store, organization, member):
        submission = await service.submit(user_id=member.id, organization_id=organization.id, text="広告文です")

        assert submission.check.status == CheckStatus.QUEUED
        assert submission.queue_position is None
        assert submission.check.id in check_store.checks
        queue.enqueue.assert_called_once_with(submission.check.id, "広告文です", organization.id, InputType.TEXT)

    @pytest.mark.asyncio
    async def test_reports_queue_position(self, service, queue, organization, member):
        queue.enqueue.return_value = 3
        submission = await service.submit(user_id=member.id, organization_id=organization.id, text="広告文")
        assert submission.queue_position == 3

    @pytest.mark.asyncio
    async def test_image_checks_screen_extracted_text(self, service, queue, organization, member):
        submission = await service.submit(
            user_id=member.id,
            organization_id=organization.id,
            text="banner.png",
            input_type="image",
            extracted_text="OCRで読み取った文",
        )
        args = queue.enqueue.call_args.args
        assert args[1] == "OCRで読み取った文"
        assert args[3] == InputType.IMAGE
        assert submission.check.input_type == InputType.IMAGE

    @pytest.mark.parametrize("text", ["", "   \n", "あ" * 101])
    @pytest.mark.asyncio
    async def test_rejects_bad_text(self, service, queue, organization, member, text):
        with pytest.raises(ValidationError):
            await service.submit(user_id=member.id, organization_id=organization.id, text=text)
        queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_unknown_input_type(self, service, organization, member):
        with pytest.raises(ValidationError):
            await service.submit(user_id=member.id, organization_id=organization.id, text="a", input_type="pdf")

    @pytest.mark.asyncio
    async def test_image_without_extracted_text_is_rejected(self, service, organization, member):
        with pytest.raises(ValidationError):
            await service.submit(user_id=member.id, organization_id=organization.id, text="a", input_type="image")

    @pytest.mark.asyncio
    async def test_unknown_user(self, service, organization):
        with pytest.raises(ValidationError):
            await service.submit(user_id=uuid.uuid4(), organization_id=organization.id, text="a")

    @pytest.mark.asyncio
    async def test_user_from_other_organization(self, service, check_store, member):
        other = check_store.add_organization()
        with pytest.raises(AccessDeniedError):
            await service.submit(user_id=member.id, organization_id=other.id, text="a")

    @pytest.mark.asyncio
    async def test_usage_limit(self, service, check_store):
        org = check_store.add_organization(max_checks=5, used_checks=5)
        user = check_store.add_user(org.id)
        with pytest.raises(ValidationError):
            await service.submit(user_id=user.id, organization_id=org.id, text="a")

    @pytest.mark.asyncio
    async def test_enqueue_failure_marks_check_failed(self, service, queue, check_store, organization, member):
        queue.enqueue.side_effect = RuntimeError("no running loop")

        with pytest.raises(AppError):
            await service.submit(user_id=member.id, organization_id=organization.id, text="広告文")

        (check,) = check_store.checks.values()
        assert check.status == CheckStatus.FAILED
        assert "no running loop" in check.error_message


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_queued_check_removes_it_from_queue(self, service, queue, check_store, organization, member):
        check = check_store.put_check(organization_id=organization.id, user_id=member.id)
        queue.remove.return_value = True

        cancelled = await service.cancel(check.id, member.id)

        assert cancelled.status == CheckStatus.CANCELLED
        assert cancelled.error_message == "Cancelled by user"
        queue.remove.assert_called_once_with(check.id)

    @pytest.mark.asyncio
    async def test_admin_can_cancel_processing_check(self, service, check_store, organization, member, admin):
        check = check_store.put_check(organization_id=organization.id, user_id=member.id, status=CheckStatus.PROCESSING)
        cancelled = await service.cancel(check.id, admin.id)
        assert cancelled.status == CheckStatus.CANCELLED

    @pytest.mark.parametrize("status", [CheckStatus.COMPLETED, CheckStatus.FAILED, CheckStatus.CANCELLED])
    @pytest.mark.asyncio
    async def test_terminal_checks_cannot_be_cancelled(self, service, check_store, organization, member, status):
        check = check_store.put_check(organization_id=organization.id, user_id=member.id, status=status)
        with pytest.raises(CheckStateError):
            await service.cancel(check.id, member.id)
        assert check_store.checks[check.id].status == status

    @pytest.mark.asyncio
    async def test_colleague_cannot_cancel(self, service, check_store, organization, member):
        colleague = check_store.add_user(organization.id)
        check = check_store.put_check(organization_id=organization.id, user_id=member.id)
        with pytest.raises(AccessDeniedError):
            await service.cancel(check.id, colleague.id)

    @pytest.mark.asyncio
    async def test_missing_check(self, service, member):
        with pytest.raises(NotFoundError):
            await service.cancel(uuid.uuid4(), member.id)


class TestGetDetail:
    @pytest.mark.asyncio
    async def test_owner_reads_detail(self, service, check_store, organization, member):
        check = check_store.put_check(organization_id=organization.id, user_id=member.id)
        detail = await service.get_detail(check.id, member.id)
        assert detail.check.id == check.id
        assert detail.violations == []

    @pytest.mark.asyncio
    async def test_outsider_is_denied(self, service, check_store, organization, member):
        outsider = check_store.add_user(check_store.add_organization().id)
        check = check_store.put_check(organization_id=organization.id, user_id=member.id)
        with pytest.raises(AccessDeniedError):
            await service.get_detail(check.id, outsider.id)
