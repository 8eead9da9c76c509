"""Shared fixtures for the reminder service tests."""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from academy.reminders.config import ReminderSettings
from academy.reminders.scheduler import CourseReminderScheduler
from academy.reminders.schemas import CourseSummary, CourseType, Recipient, ReminderHistoryEntry
from academy.utils.timezone import utc_now


class FakeCourseDirectory:
    """In-memory course directory with per-user enrollment statuses."""

    def __init__(self):
        self.courses: Dict[Tuple[CourseType, str], CourseSummary] = {}
        self.enrollments: Dict[Tuple[CourseType, str], Dict[str, Tuple[Recipient, str]]] = {}
        self.failing_types = set()
        self.status_lookups: List[str] = []

    def add_course(self, course_id, course_type=CourseType.IN_PERSON, start_date=None, title=None, status="open", **extra):
        course = CourseSummary(
            id=course_id,
            course_type=course_type,
            title=title or f"Course {course_id}",
            code=f"C-{course_id}",
            start_date=start_date,
            status=status,
            **extra,
        )
        self.courses[(course_type, course_id)] = course
        return course

    def enroll(self, course_id, course_type=CourseType.IN_PERSON, user_id="u1", status="paid", email=None, name=None):
        recipient = Recipient(user_id=user_id, email=email or f"{user_id}@example.com", name=name or user_id.upper())
        self.enrollments.setdefault((course_type, course_id), {})[user_id] = (recipient, status)
        return recipient

    def set_status(self, course_id, course_type, user_id, status):
        recipient, _ = self.enrollments[(course_type, course_id)][user_id]
        self.enrollments[(course_type, course_id)][user_id] = (recipient, status)

    async def get_course(self, course_id, course_type):
        return self.courses.get((course_type, course_id))

    async def get_enrolled_users(self, course_id, course_type):
        users = self.enrollments.get((course_type, course_id), {})
        return [r for r, status in users.values() if status in ("paid", "registered")]

    async def get_enrollment_status(self, user_id, course_id, course_type):
        self.status_lookups.append(user_id)
        entry = self.enrollments.get((course_type, course_id), {}).get(user_id)
        return entry[1] if entry else None

    async def list_upcoming_courses(self, course_type, start_after, start_before, statuses):
        if course_type in self.failing_types:
            raise RuntimeError("course store unavailable")
        return [
            c for (ctype, _), c in self.courses.items()
            if ctype == course_type
            and isinstance(c.start_date, datetime)
            and start_after < c.start_date <= start_before
            and c.status in statuses
        ]


class RecordingMailer:
    """Async mailer that records every send and can fail for chosen addresses."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent: List[Tuple[str, str, Optional[str]]] = []
        self.attempts: List[str] = []

    async def _deliver(self, kind, email, extra=None):
        self.attempts.append(email)
        if email in self.fail_for:
            raise RuntimeError(f"SMTP rejected {email}")
        self.sent.append((kind, email, extra))
        return True

    async def send_course_starting_reminder(self, user, course):
        return await self._deliver("course-starting", user.email)

    async def send_preparation_reminder(self, user, course):
        return await self._deliver("preparation", user.email)

    async def send_tech_check_reminder(self, user, course):
        return await self._deliver("tech-check", user.email)

    async def send_custom_course_message(self, user, course, custom_message):
        return await self._deliver("custom", user.email, custom_message)

    async def send_plain_email(self, to_email, subject, body):
        return await self._deliver("plain", to_email, subject)


class RecordingHistoryStore:
    def __init__(self, fail=False):
        self.fail = fail
        self.entries: List[Tuple[str, CourseType, ReminderHistoryEntry]] = []

    async def append_course_reminder_log(self, course_id, course_type, entry):
        if self.fail:
            raise RuntimeError("course document locked")
        self.entries.append((course_id, course_type, entry))


class MutableClock:
    def __init__(self, now=None):
        self.now = now or utc_now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def starts_in(seconds: float, lead_hours: float = 24.0) -> datetime:
    """Start date whose reminder fires ``seconds`` from now."""
    return utc_now() + timedelta(hours=lead_hours, seconds=seconds)


@pytest.fixture
def reminder_settings():
    return ReminderSettings(
        SEND_DELAY_SECONDS=0,
        SEND_TIMEOUT_SECONDS=1,
        HISTORY_LIMIT=200,
        BOOTSTRAP_DELAY_SECONDS=0,
        CLEANUP_INTERVAL_SECONDS=3600,
        METRICS_ENABLED=False,
    )


@pytest.fixture
def directory():
    return FakeCourseDirectory()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def history_store():
    return RecordingHistoryStore()


@pytest_asyncio.fixture
async def scheduler(directory, mailer, history_store, reminder_settings):
    scheduler = CourseReminderScheduler(
        directory=directory,
        mailer=mailer,
        history_store=history_store,
        settings=reminder_settings,
    )
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout=3.0, interval=0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait_until
