"""
Schemas for course reminders: course types, scheduled jobs, history entries
and the admin API payloads.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CourseType(str, Enum):
    IN_PERSON = "in-person"
    ONLINE_LIVE = "online-live"
    SELF_PACED = "self-paced"


class EmailType(str, Enum):
    COURSE_STARTING = "course-starting"
    PREPARATION = "preparation"
    TECH_CHECK = "tech-check"
    CUSTOM = "custom"


# Course types with a start date that a reminder can be anchored to
REMINDER_COURSE_TYPES = frozenset({CourseType.IN_PERSON, CourseType.ONLINE_LIVE})

# Enrollment statuses that receive reminders
REMINDER_ELIGIBLE_STATUSES = frozenset({"paid", "registered"})

# Course statuses picked up by the startup sweep
UPCOMING_COURSE_STATUSES = frozenset({"open", "full"})

# Identifiers used by the legacy document store
_COURSE_TYPE_ALIASES = {
    "InPersonAestheticTraining": CourseType.IN_PERSON,
    "OnlineLiveTraining": CourseType.ONLINE_LIVE,
    "SelfPacedOnlineTraining": CourseType.SELF_PACED,
}


def parse_course_type(value: Any) -> Optional[CourseType]:
    """Return the CourseType for a value or legacy alias, None if unknown."""
    if isinstance(value, CourseType):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    if value in _COURSE_TYPE_ALIASES:
        return _COURSE_TYPE_ALIASES[value]
    try:
        return CourseType(value)
    except ValueError:
        return None


def parse_email_type(value: Any) -> Optional[EmailType]:
    if isinstance(value, EmailType):
        return value
    try:
        return EmailType(value)
    except ValueError:
        return None


class CourseSummary(BaseModel):
    """Display fields of a course as returned by the course directory.

    The upstream course schema is loosely enforced, so everything except the
    identifiers is optional and ``start_date`` may still be a raw string.
    """
    id: str
    course_type: CourseType
    title: Optional[str] = None
    code: Optional[str] = None
    start_date: Optional[Union[datetime, str]] = None
    status: Optional[str] = None
    platform: Optional[str] = None
    tech_check_date: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.title or self.code or f"{self.course_type.value} course {self.id}"


class Recipient(BaseModel):
    """Minimal contact fields of an enrolled user."""
    user_id: str
    email: str
    name: Optional[str] = None


class SendOutcome(BaseModel):
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0


class ScheduledReminder(BaseModel):
    """A pending, not-yet-fired reminder job."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    course_id: str
    course_type: CourseType
    course_name: str
    course_code: Optional[str] = None
    fire_at: datetime
    recipient_count: int
    email_type: EmailType
    custom_message: Optional[str] = None
    is_custom: bool = False
    status: Literal["scheduled"] = "scheduled"
    created_at: datetime


class ScheduledReminderView(ScheduledReminder):
    days_from_now: int
    is_overdue: bool
    is_today: bool


class ReminderHistoryEntry(BaseModel):
    """Immutable record of one fired job."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    course_id: str
    course_type: CourseType
    course_name: str
    course_code: Optional[str] = None
    fire_at: datetime
    recipient_count: int
    email_type: EmailType
    custom_message: Optional[str] = None
    is_custom: bool = False
    executed_at: datetime
    success_count: int
    failure_count: int
    skipped_count: int = 0
    status: Literal["completed", "failed"]
    error: Optional[str] = None


class SchedulerStats(BaseModel):
    total_scheduled: int = 0
    total_executed: int = 0
    total_cancelled: int = 0
    total_emails_sent: int = 0
    total_emails_failed: int = 0
    total_emails_skipped: int = 0
    last_cleanup: Optional[datetime] = None


class SchedulerStatus(BaseModel):
    total_scheduled: int
    is_shutting_down: bool
    stats: SchedulerStats
    reminders: List[ScheduledReminderView]


class CleanupResult(BaseModel):
    history_trimmed: int
    stale_jobs_removed: int
    history_size: int
    cleaned_at: datetime


class HealthStatus(BaseModel):
    status: Literal["healthy", "degraded", "stopped"]
    pending_jobs: int
    overdue_jobs: int
    recent_failures: int
    issues: List[str] = Field(default_factory=list)
    checked_at: datetime


class DetailedStatistics(BaseModel):
    stats: SchedulerStats
    pending_jobs: int
    pending_by_course_type: Dict[str, int]
    pending_by_email_type: Dict[str, int]
    pending_recipients: int
    due_within_24h: int
    due_within_7d: int
    history_size: int
    history_completed: int
    history_failed: int
    success_rate: Optional[float] = None
    generated_at: datetime


# --- Admin API payloads ---

class ScheduleReminderRequest(BaseModel):
    course_id: str
    course_type: str


class ScheduleCustomReminderRequest(BaseModel):
    course_id: str
    course_type: str
    email_type: str = EmailType.COURSE_STARTING.value
    send_at: Optional[datetime] = None
    custom_message: Optional[str] = None


class ReminderScheduled(BaseModel):
    job_id: str


class ScheduleAllResult(BaseModel):
    scheduled: int


class CancelResult(BaseModel):
    cancelled: int
