"""
Collaborator contracts consumed by the reminder scheduler.

The scheduler only ever talks to courses, enrollments and email through these
protocols, so the surrounding application (or a test) decides the backing
implementation.
"""
from datetime import datetime
from typing import Any, Iterable, List, Optional, Protocol, runtime_checkable

from .schemas import CourseSummary, CourseType, Recipient, ReminderHistoryEntry


@runtime_checkable
class CourseDirectory(Protocol):
    async def get_course(self, course_id: str, course_type: CourseType) -> Optional[CourseSummary]:
        """Course summary, or None when the course does not exist."""
        ...

    async def get_enrolled_users(self, course_id: str, course_type: CourseType) -> List[Recipient]:
        """Users currently enrolled with an eligible status (paid/registered)."""
        ...

    async def get_enrollment_status(self, user_id: str, course_id: str, course_type: CourseType) -> Optional[str]:
        """Current enrollment status of one user for the course, None if not enrolled."""
        ...

    async def list_upcoming_courses(
        self,
        course_type: CourseType,
        start_after: datetime,
        start_before: datetime,
        statuses: Iterable[str],
    ) -> List[CourseSummary]:
        """Courses starting in (start_after, start_before] with one of the given statuses."""
        ...


class ReminderMailer(Protocol):
    """Email capability.

    Only ``send_plain_email`` is mandatory. The typed senders
    (``send_course_starting_reminder``, ``send_preparation_reminder``,
    ``send_tech_check_reminder``, ``send_custom_course_message``) are looked up
    by name and may be absent. Senders may be sync or async and return a
    truthy value on success.
    """

    def send_plain_email(self, to_email: str, subject: str, body: str) -> Any:
        ...


@runtime_checkable
class ReminderHistoryStore(Protocol):
    async def append_course_reminder_log(
        self, course_id: str, course_type: CourseType, entry: ReminderHistoryEntry
    ) -> None:
        ...
