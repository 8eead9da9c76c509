"""
Tests for per-recipient reminder delivery.
"""
import asyncio
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from academy.reminders.dispatcher import ReminderDeliveryError, build_fallback_email, send_reminder_email
from academy.reminders.schemas import CourseSummary, CourseType, EmailType, Recipient


@pytest.fixture
def user():
    return Recipient(user_id="u1", email="ada@example.com", name="Ada")


@pytest.fixture
def course():
    return CourseSummary(
        id="c1",
        course_type=CourseType.ONLINE_LIVE,
        title="Skin Science Live",
        start_date=datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc),
    )


class TestBuildFallbackEmail:

    @pytest.mark.parametrize("email_type, subject", [
        (EmailType.COURSE_STARTING, "Reminder: Skin Science Live starts tomorrow!"),
        (EmailType.PREPARATION, "Get ready for Skin Science Live"),
        (EmailType.TECH_CHECK, "Tech Check Reminder: Skin Science Live"),
        (EmailType.CUSTOM, "Important Update: Skin Science Live"),
    ])
    def test_subjects(self, user, course, email_type, subject):
        assert build_fallback_email(email_type, user, course, "Hi")[0] == subject

    def test_custom_body_carries_message(self, user, course):
        _, body = build_fallback_email(EmailType.CUSTOM, user, course, "The venue has moved to Room 4")

        assert body.startswith("Hello Ada,")
        assert "The venue has moved to Room 4" in body

    def test_course_without_title_or_start_date(self, course):
        course = course.model_copy(update={"title": None, "start_date": None})
        subject, body = build_fallback_email(EmailType.COURSE_STARTING, Recipient(user_id="u", email="x@y.z"), course)

        assert subject == "Reminder: online-live course c1 starts tomorrow!"
        assert body.startswith("Hello there,")


class TestSendReminderEmail:

    @pytest.mark.asyncio
    async def test_uses_typed_sender(self, user, course):
        mailer = MagicMock()
        mailer.send_tech_check_reminder.return_value = True

        await send_reminder_email(mailer, EmailType.TECH_CHECK, user, course)

        mailer.send_tech_check_reminder.assert_called_once_with(user, course)
        mailer.send_plain_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_custom_sender_receives_message(self, user, course):
        mailer = MagicMock()
        mailer.send_custom_course_message.return_value = True

        await send_reminder_email(mailer, EmailType.CUSTOM, user, course, custom_message="Bring ID")

        mailer.send_custom_course_message.assert_called_once_with(user, course, "Bring ID")

    @pytest.mark.asyncio
    async def test_blocking_sender_runs_off_the_event_loop(self, user, course):
        loop_thread = threading.get_ident()
        seen = []

        class BlockingMailer:
            def send_course_starting_reminder(self, user, course):
                seen.append(threading.get_ident())
                return True

        await send_reminder_email(BlockingMailer(), EmailType.COURSE_STARTING, user, course)

        assert seen and seen[0] != loop_thread

    @pytest.mark.asyncio
    async def test_falls_back_to_plain_email(self, user, course):
        mailer = MagicMock(spec=["send_plain_email"])
        mailer.send_plain_email.return_value = True

        await send_reminder_email(mailer, EmailType.PREPARATION, user, course)

        to_email, subject, body = mailer.send_plain_email.call_args.args
        assert to_email == "ada@example.com"
        assert subject == "Get ready for Skin Science Live"
        assert "Hello Ada," in body

    @pytest.mark.asyncio
    async def test_no_sender_at_all(self, user, course):
        with pytest.raises(ReminderDeliveryError):
            await send_reminder_email(object(), EmailType.PREPARATION, user, course)

    @pytest.mark.asyncio
    async def test_false_result_is_a_failure(self, user, course):
        mailer = MagicMock()
        mailer.send_course_starting_reminder.return_value = False

        with pytest.raises(ReminderDeliveryError, match="ada@example.com"):
            await send_reminder_email(mailer, EmailType.COURSE_STARTING, user, course)

    @pytest.mark.asyncio
    async def test_mailer_exception_propagates(self, user, course):
        mailer = MagicMock()
        mailer.send_course_starting_reminder.side_effect = ConnectionRefusedError("smtp down")

        with pytest.raises(ConnectionRefusedError):
            await send_reminder_email(mailer, EmailType.COURSE_STARTING, user, course)

    @pytest.mark.asyncio
    async def test_timeout(self, user, course):
        class SlowMailer:
            async def send_course_starting_reminder(self, user, course):
                await asyncio.sleep(1)
                return True

        with pytest.raises(ReminderDeliveryError, match="Timed out"):
            await send_reminder_email(SlowMailer(), EmailType.COURSE_STARTING, user, course, timeout=0.05)
