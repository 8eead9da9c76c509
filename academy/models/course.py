"""
Course, enrollment and reminder-log rows read by the reminder service.

Only the columns the reminder service needs are mapped here; the full course
documents belong to the course management application.
"""
from datetime import datetime
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from academy.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class InPersonCourse(Base):
    __tablename__ = "in_person_courses"

    id = Column(String, primary_key=True, default=_uuid)
    title = Column(String, nullable=True)
    course_code = Column(String, nullable=True, unique=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="draft")  # draft, open, full, in-progress, completed, cancelled
    venue = Column(String, nullable=True)

    __table_args__ = (
        Index("ix_in_person_courses_start_status", "start_date", "status"),
    )


class OnlineLiveCourse(Base):
    __tablename__ = "online_live_courses"

    id = Column(String, primary_key=True, default=_uuid)
    title = Column(String, nullable=True)
    course_code = Column(String, nullable=True, unique=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="draft")
    platform = Column(String, nullable=True)
    tech_check_date = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_online_live_courses_start_status", "start_date", "status"),
    )


class Student(Base):
    __tablename__ = "students"

    id = Column(String, primary_key=True, default=_uuid)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    enrollments = relationship("CourseEnrollment", back_populates="student")

    @property
    def full_name(self):
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or None


class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String, ForeignKey("students.id"), nullable=False, index=True)
    course_id = Column(String, nullable=False)
    course_type = Column(String, nullable=False)  # in-person, online-live, self-paced
    status = Column(String, nullable=False)  # wishlist, cart, registered, paid, completed, cancelled
    enrolled_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = relationship("Student", back_populates="enrollments")

    __table_args__ = (
        Index("ix_course_enrollments_course", "course_type", "course_id", "status"),
    )


class CourseReminderLog(Base):
    """Per-course log of fired reminders, shown in the course admin pages."""
    __tablename__ = "course_reminder_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    course_id = Column(String, nullable=False)
    course_type = Column(String, nullable=False)
    job_id = Column(String, nullable=False)
    email_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    recipient_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    executed_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_course_reminder_logs_course", "course_type", "course_id"),
    )
