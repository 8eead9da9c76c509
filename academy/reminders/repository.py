import asyncio
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from academy.db.session import SessionLocal
from academy.models.course import (
    CourseEnrollment,
    CourseReminderLog,
    InPersonCourse,
    OnlineLiveCourse,
    Student,
)
from academy.utils.timezone import to_utc_aware
from .schemas import (
    REMINDER_ELIGIBLE_STATUSES,
    CourseSummary,
    CourseType,
    Recipient,
    ReminderHistoryEntry,
)


_COURSE_MODELS = {
    CourseType.IN_PERSON: InPersonCourse,
    CourseType.ONLINE_LIVE: OnlineLiveCourse,
}


def _to_summary(course, course_type: CourseType) -> CourseSummary:
    return CourseSummary(
        id=str(course.id),
        course_type=course_type,
        title=course.title,
        code=course.course_code,
        start_date=to_utc_aware(course.start_date),
        status=course.status,
        platform=getattr(course, "platform", None),
        tech_check_date=to_utc_aware(getattr(course, "tech_check_date", None)),
    )


def get_course(db: Session, course_id: str, course_type: CourseType) -> Optional[CourseSummary]:
    model = _COURSE_MODELS.get(course_type)
    if model is None:
        return None
    course = db.get(model, course_id)
    return _to_summary(course, course_type) if course else None


def list_enrolled_users(db: Session, course_id: str, course_type: CourseType) -> List[Recipient]:
    stmt = (
        select(Student)
        .join(CourseEnrollment, CourseEnrollment.student_id == Student.id)
        .where(CourseEnrollment.course_id == course_id)
        .where(CourseEnrollment.course_type == course_type.value)
        .where(CourseEnrollment.status.in_(REMINDER_ELIGIBLE_STATUSES))
        .order_by(CourseEnrollment.enrolled_at.asc(), CourseEnrollment.id.asc())
    )
    recipients: List[Recipient] = []
    seen = set()
    for student in db.execute(stmt).scalars():
        if student.id in seen:
            continue
        seen.add(student.id)
        recipients.append(Recipient(user_id=str(student.id), email=student.email, name=student.full_name))
    return recipients


def get_enrollment_status(db: Session, user_id: str, course_id: str, course_type: CourseType) -> Optional[str]:
    enrollment = (
        db.query(CourseEnrollment)
        .filter(
            CourseEnrollment.student_id == user_id,
            CourseEnrollment.course_id == course_id,
            CourseEnrollment.course_type == course_type.value,
        )
        .order_by(CourseEnrollment.updated_at.desc())
        .first()
    )
    return enrollment.status if enrollment else None


def list_upcoming_courses(
    db: Session,
    course_type: CourseType,
    start_after: datetime,
    start_before: datetime,
    statuses: Iterable[str],
) -> List[CourseSummary]:
    model = _COURSE_MODELS.get(course_type)
    if model is None:
        return []
    stmt = (
        select(model)
        .where(model.start_date > start_after)
        .where(model.start_date <= start_before)
        .where(model.status.in_(list(statuses)))
        .order_by(model.start_date.asc())
    )
    return [_to_summary(c, course_type) for c in db.execute(stmt).scalars()]


def append_course_reminder_log(db: Session, course_id: str, course_type: CourseType, entry: ReminderHistoryEntry) -> CourseReminderLog:
    log = CourseReminderLog(
        course_id=course_id,
        course_type=course_type.value,
        job_id=entry.job_id,
        email_type=entry.email_type.value,
        status=entry.status,
        recipient_count=entry.recipient_count,
        success_count=entry.success_count,
        failure_count=entry.failure_count,
        skipped_count=entry.skipped_count,
        error=entry.error,
        executed_at=entry.executed_at,
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


class _SessionScoped:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def _run(self, func, *args):
        db = self.session_factory()
        try:
            return func(db, *args)
        finally:
            db.close()

    async def _run_async(self, func, *args):
        # Sessions are blocking; keep them off the event loop
        return await asyncio.to_thread(self._run, func, *args)


class SqlCourseDirectory(_SessionScoped):
    """Course directory backed by the course and enrollment tables."""

    async def get_course(self, course_id: str, course_type: CourseType) -> Optional[CourseSummary]:
        return await self._run_async(get_course, course_id, course_type)

    async def get_enrolled_users(self, course_id: str, course_type: CourseType) -> List[Recipient]:
        return await self._run_async(list_enrolled_users, course_id, course_type)

    async def get_enrollment_status(self, user_id: str, course_id: str, course_type: CourseType) -> Optional[str]:
        return await self._run_async(get_enrollment_status, user_id, course_id, course_type)

    async def list_upcoming_courses(
        self,
        course_type: CourseType,
        start_after: datetime,
        start_before: datetime,
        statuses: Iterable[str],
    ) -> List[CourseSummary]:
        return await self._run_async(list_upcoming_courses, course_type, start_after, start_before, list(statuses))


class SqlReminderHistoryStore(_SessionScoped):
    async def append_course_reminder_log(
        self, course_id: str, course_type: CourseType, entry: ReminderHistoryEntry
    ) -> None:
        await self._run_async(append_course_reminder_log, course_id, course_type, entry)
