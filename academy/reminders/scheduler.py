"""
In-process course reminder scheduler.

Each scheduled reminder is an asyncio task that sleeps until its fire time,
sends the emails to the recipient snapshot taken at scheduling time and then
removes itself from the registry. Nothing is persisted: after a restart the
registry is rebuilt by ``schedule_all_upcoming_reminders``.
"""
import asyncio
import itertools
import logging
import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from academy.utils.timezone import parse_datetime, to_local, utc_now
from .config import ReminderSettings, settings as reminder_settings
from .contracts import CourseDirectory, ReminderHistoryStore, ReminderMailer
from .dispatcher import send_reminder_email
from .metrics import (
    course_reminder_emails_failed_total,
    course_reminder_emails_sent_total,
    course_reminder_emails_skipped_total,
    course_reminders_cancelled_total,
    course_reminders_executed_total,
    course_reminders_pending,
    course_reminders_scheduled_total,
)
from .schemas import (
    REMINDER_COURSE_TYPES,
    REMINDER_ELIGIBLE_STATUSES,
    UPCOMING_COURSE_STATUSES,
    CleanupResult,
    CourseSummary,
    CourseType,
    DetailedStatistics,
    EmailType,
    HealthStatus,
    Recipient,
    ReminderHistoryEntry,
    ScheduledReminder,
    ScheduledReminderView,
    SchedulerStats,
    SchedulerStatus,
    SendOutcome,
    parse_course_type,
    parse_email_type,
)

logger = logging.getLogger(__name__)

# Grace period before a pending job counts as overdue in health checks
OVERDUE_GRACE = timedelta(minutes=5)


@dataclass
class _ReminderJob:
    reminder: ScheduledReminder
    course: CourseSummary
    recipients: List[Recipient]
    task: Optional[asyncio.Task] = None
    fired: bool = False


class CourseReminderScheduler:
    """Schedules, executes and accounts for course reminder emails.

    One instance is created per process and shared through dependency
    injection. All public operations log and swallow collaborator failures:
    scheduling answers ``None`` and sweeps answer ``0`` instead of raising.
    """

    def __init__(
        self,
        directory: CourseDirectory,
        mailer: ReminderMailer,
        history_store: Optional[ReminderHistoryStore] = None,
        settings: Optional[ReminderSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.directory = directory
        self.mailer = mailer
        self.history_store = history_store
        self.settings = settings or reminder_settings
        self._clock = clock or utc_now

        self._jobs: Dict[str, _ReminderJob] = {}
        self._history: Deque[ReminderHistoryEntry] = deque(maxlen=self.settings.HISTORY_LIMIT)
        self._stats = SchedulerStats()
        self._sequence = itertools.count(1)
        self._background_tasks: List[asyncio.Task] = []
        self.is_shutting_down = False

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def schedule_reminder_for_course(self, course_id: Any, course_type: Any) -> Optional[str]:
        """Schedule the standard reminder ``LEAD_TIME_HOURS`` before the course starts.

        Replaces any pending standard reminder of the same course. Returns the
        new job id, or None when nothing was scheduled.
        """
        ctype = parse_course_type(course_type)
        if self.is_shutting_down:
            logger.warning(f"⚠️ [Reminders] Scheduler is shut down - ignoring reminder for course {course_id}")
            return None
        if not course_id or ctype is None:
            logger.warning(f"⚠️ [Reminders] Invalid reminder request: course_id={course_id!r} course_type={course_type!r}")
            return None
        if ctype not in REMINDER_COURSE_TYPES:
            logger.info(f"⚠️ [Reminders] Reminders not supported for course type: {ctype.value}")
            return None

        course_id = str(course_id)
        try:
            logger.info(f"📅 [Reminders] Scheduling reminder for {ctype.value} course: {course_id}")

            course = await self.directory.get_course(course_id, ctype)
            if course is None:
                logger.error(f"❌ [Reminders] Course not found: {course_id}")
                return None

            start_date = parse_datetime(course.start_date)
            if start_date is None:
                logger.error(f"❌ [Reminders] Invalid start date for course: {course_id}")
                return None

            now = self._clock()
            if start_date <= now:
                logger.info(f"⚠️ [Reminders] Course {course_id} has already started - no reminder")
                return None

            fire_at = start_date - timedelta(hours=self.settings.LEAD_TIME_HOURS)
            if fire_at <= now:
                logger.info(f"⚠️ [Reminders] Cannot schedule reminder for course {course_id} - starts too soon")
                return None

            recipients = await self.directory.get_enrolled_users(course_id, ctype)
            if not recipients:
                logger.info(f"📧 [Reminders] No enrolled users found for course: {course_id}")
                return None

            if self.is_shutting_down:
                return None

            # At most one pending standard reminder per course
            for existing in self._find_jobs(course_id, ctype, standard_only=True):
                self.cancel_reminder(existing)

            job_id = self._register(
                course_id=course_id,
                course_type=ctype,
                course=course,
                fire_at=fire_at,
                email_type=EmailType.COURSE_STARTING,
                recipients=recipients,
            )

            logger.info(f"✅ [Reminders] Reminder scheduled for {course.display_name}")
            logger.info(f"📅 [Reminders] Will send on: {to_local(fire_at).isoformat()}")
            logger.info(f"👥 [Reminders] Recipients: {len(recipients)} users")
            return job_id
        except Exception:
            logger.exception(f"❌ [Reminders] Error scheduling reminder for course {course_id}")
            return None

    async def schedule_custom_reminder(
        self,
        course_id: Any,
        course_type: Any,
        send_at: Any,
        email_type: Any,
        custom_message: Optional[str] = None,
    ) -> Optional[str]:
        """Schedule an ad hoc reminder at ``send_at``.

        Custom reminders stack on top of the standard one; nothing else for the
        course is cancelled.
        """
        ctype = parse_course_type(course_type)
        etype = parse_email_type(email_type)
        if self.is_shutting_down:
            logger.warning(f"⚠️ [Reminders] Scheduler is shut down - ignoring custom reminder for course {course_id}")
            return None
        if not course_id or ctype is None or ctype not in REMINDER_COURSE_TYPES:
            logger.warning(f"⚠️ [Reminders] Invalid custom reminder request: course_id={course_id!r} course_type={course_type!r}")
            return None
        if etype is None:
            logger.warning(f"⚠️ [Reminders] Unknown email type: {email_type!r}")
            return None
        if etype == EmailType.CUSTOM and not (custom_message and custom_message.strip()):
            logger.warning(f"⚠️ [Reminders] Custom message is required for custom reminders (course {course_id})")
            return None
        if etype == EmailType.TECH_CHECK and ctype != CourseType.ONLINE_LIVE:
            logger.warning(f"⚠️ [Reminders] Tech check reminders are only for online-live courses (course {course_id})")
            return None

        course_id = str(course_id)
        try:
            course = await self.directory.get_course(course_id, ctype)
            if course is None:
                logger.error(f"❌ [Reminders] Course not found: {course_id}")
                return None

            if parse_datetime(course.start_date) is None:
                logger.error(f"❌ [Reminders] Invalid start date for course: {course_id}")
                return None

            fire_at = parse_datetime(send_at)
            if fire_at is None:
                logger.warning(f"⚠️ [Reminders] Invalid send time for custom reminder: {send_at!r}")
                return None
            if fire_at <= self._clock():
                logger.info(f"⚠️ [Reminders] Send time {fire_at.isoformat()} is in the past - not scheduling")
                return None

            recipients = await self.directory.get_enrolled_users(course_id, ctype)

            if self.is_shutting_down:
                return None

            job_id = self._register(
                course_id=course_id,
                course_type=ctype,
                course=course,
                fire_at=fire_at,
                email_type=etype,
                recipients=recipients,
                custom_message=custom_message.strip() if etype == EmailType.CUSTOM else None,
                is_custom=True,
            )
            logger.info(
                f"✅ [Reminders] Custom {etype.value} reminder {job_id} scheduled for {course.display_name} "
                f"({len(recipients)} recipients)"
            )
            return job_id
        except Exception:
            logger.exception(f"❌ [Reminders] Error scheduling custom reminder for course {course_id}")
            return None

    async def schedule_all_upcoming_reminders(self) -> int:
        """Schedule reminders for open/full courses starting within the lookahead window."""
        if self.is_shutting_down:
            return 0

        logger.info("📅 [Reminders] Scheduling reminders for all upcoming courses...")
        now = self._clock()
        start_after = now + timedelta(days=1)
        start_before = now + relativedelta(months=self.settings.LOOKAHEAD_MONTHS)

        scheduled_count = 0
        for ctype in (CourseType.IN_PERSON, CourseType.ONLINE_LIVE):
            try:
                courses = await self.directory.list_upcoming_courses(
                    ctype, start_after, start_before, UPCOMING_COURSE_STATUSES
                )
            except Exception:
                logger.exception(f"❌ [Reminders] Error loading upcoming {ctype.value} courses")
                continue

            for course in courses:
                if await self.schedule_reminder_for_course(course.id, ctype):
                    scheduled_count += 1

        logger.info(f"✅ [Reminders] Scheduled {scheduled_count} course reminders")
        return scheduled_count

    def _register(
        self,
        course_id: str,
        course_type: CourseType,
        course: CourseSummary,
        fire_at: datetime,
        email_type: EmailType,
        recipients: List[Recipient],
        custom_message: Optional[str] = None,
        is_custom: bool = False,
    ) -> str:
        now = self._clock()
        prefix = f"custom-{email_type.value}" if is_custom else "reminder"
        job_id = f"{prefix}-{course_type.value}-{course_id}-{int(now.timestamp() * 1000)}-{next(self._sequence)}"

        reminder = ScheduledReminder(
            job_id=job_id,
            course_id=course_id,
            course_type=course_type,
            course_name=course.display_name,
            course_code=course.code,
            fire_at=fire_at,
            recipient_count=len(recipients),
            email_type=email_type,
            custom_message=custom_message,
            is_custom=is_custom,
            created_at=now,
        )
        job = _ReminderJob(reminder=reminder, course=course, recipients=list(recipients))
        self._jobs[job_id] = job
        job.task = asyncio.create_task(self._run_job(job), name=job_id)

        self._stats.total_scheduled += 1
        course_reminders_scheduled_total.labels(kind="custom" if is_custom else "standard").inc()
        course_reminders_pending.set(len(self._jobs))
        return job_id

    def _find_jobs(self, course_id: str, course_type: CourseType, standard_only: bool = False) -> List[str]:
        return [
            job_id
            for job_id, job in self._jobs.items()
            if job.reminder.course_id == course_id
            and job.reminder.course_type == course_type
            and not (standard_only and job.reminder.is_custom)
        ]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_job(self, job: _ReminderJob) -> None:
        delay = (job.reminder.fire_at - self._clock()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        job.fired = True
        if self.is_shutting_down:
            return
        await self._execute_job(job)

    async def _execute_job(self, job: _ReminderJob) -> None:
        reminder = job.reminder
        logger.info(f"📧 [Reminders] Executing reminder job {reminder.job_id} for course: {reminder.course_name}")

        error: Optional[str] = None
        try:
            if reminder.is_custom:
                outcome = await self.send_custom_reminders_to_users(
                    job.course, job.recipients, reminder.email_type, reminder.custom_message
                )
            else:
                outcome = await self.send_reminders_to_users(job.course, job.recipients)
        except Exception as e:
            logger.exception(f"❌ [Reminders] Reminder job {reminder.job_id} failed")
            error = str(e) or e.__class__.__name__
            outcome = SendOutcome(failure_count=reminder.recipient_count)
        finally:
            self._remove_job(reminder.job_id, job)

        if self.is_shutting_down:
            logger.info(f"⏹️ [Reminders] Shutdown during job {reminder.job_id} - outcome not recorded")
            return

        entry = ReminderHistoryEntry(
            **reminder.model_dump(exclude={"status", "created_at"}),
            executed_at=self._clock(),
            success_count=outcome.success_count,
            failure_count=outcome.failure_count,
            skipped_count=outcome.skipped_count,
            status="failed" if error else "completed",
            error=error,
        )
        self._record(entry)
        await self._write_back(entry)

    async def send_reminders_to_users(self, course: CourseSummary, recipients: List[Recipient]) -> SendOutcome:
        """Send the course-starting reminder to each still-enrolled recipient."""
        return await self._send_batch(course, recipients, EmailType.COURSE_STARTING)

    async def send_custom_reminders_to_users(
        self,
        course: CourseSummary,
        recipients: List[Recipient],
        email_type: EmailType,
        custom_message: Optional[str] = None,
    ) -> SendOutcome:
        return await self._send_batch(course, recipients, email_type, custom_message)

    async def _send_batch(
        self,
        course: CourseSummary,
        recipients: List[Recipient],
        email_type: EmailType,
        custom_message: Optional[str] = None,
    ) -> SendOutcome:
        outcome = SendOutcome()
        logger.info(
            f"📧 [Reminders] Sending {email_type.value} reminders to {len(recipients)} users for: {course.display_name}"
        )

        sent_any = False
        for user in recipients:
            if self.is_shutting_down:
                logger.warning(f"⏹️ [Reminders] Shutdown requested - stopping batch for {course.display_name}")
                break
            try:
                status = await self.directory.get_enrollment_status(user.user_id, course.id, course.course_type)
                if status not in REMINDER_ELIGIBLE_STATUSES:
                    logger.info(f"⚠️ [Reminders] Skipping user {user.email} - not properly enrolled (status={status})")
                    outcome.skipped_count += 1
                    continue

                # Pacing between sends to respect the email provider's rate limits
                if sent_any and self.settings.SEND_DELAY_SECONDS > 0:
                    await asyncio.sleep(self.settings.SEND_DELAY_SECONDS)
                sent_any = True

                await send_reminder_email(
                    self.mailer,
                    email_type,
                    user,
                    course,
                    custom_message=custom_message,
                    timeout=self.settings.SEND_TIMEOUT_SECONDS,
                )
                outcome.success_count += 1
            except Exception as e:
                logger.error(f"❌ [Reminders] Failed to send reminder to {user.email}: {e!r}")
                outcome.failure_count += 1

        logger.info(f"✅ [Reminders] Reminder batch complete for {course.display_name}")
        logger.info(
            f"📊 [Reminders] Success: {outcome.success_count}, Failed: {outcome.failure_count}, "
            f"Skipped: {outcome.skipped_count}"
        )
        return outcome

    def _record(self, entry: ReminderHistoryEntry) -> None:
        self._history.append(entry)

        self._stats.total_executed += 1
        self._stats.total_emails_sent += entry.success_count
        self._stats.total_emails_failed += entry.failure_count
        self._stats.total_emails_skipped += entry.skipped_count

        course_reminders_executed_total.labels(status=entry.status).inc()
        course_reminder_emails_sent_total.inc(entry.success_count)
        course_reminder_emails_failed_total.inc(entry.failure_count)
        course_reminder_emails_skipped_total.inc(entry.skipped_count)

    async def _write_back(self, entry: ReminderHistoryEntry) -> None:
        if self.history_store is None:
            return
        try:
            await self.history_store.append_course_reminder_log(entry.course_id, entry.course_type, entry)
        except Exception as e:
            logger.warning(f"⚠️ [Reminders] Could not store reminder history for course {entry.course_id}: {e!r}")

    def _remove_job(self, job_id: str, job: _ReminderJob) -> None:
        if self._jobs.get(job_id) is job:
            del self._jobs[job_id]
            course_reminders_pending.set(len(self._jobs))

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @staticmethod
    def _cancel_task(job: _ReminderJob) -> None:
        # A job that already fired keeps running; only pending timers are cancelled
        if job.task is not None and not job.fired and not job.task.done():
            job.task.cancel()

    def cancel_reminder(self, job_id: str) -> bool:
        """Cancel a pending reminder. A job that already started sending is left to finish."""
        job = self._jobs.get(job_id)
        if job is None:
            return False
        if job.fired:
            logger.warning(f"⚠️ [Reminders] Reminder {job_id} is already sending - cannot cancel")
            return False
        del self._jobs[job_id]
        self._cancel_task(job)
        self._stats.total_cancelled += 1
        course_reminders_cancelled_total.inc()
        course_reminders_pending.set(len(self._jobs))
        logger.info(f"❌ [Reminders] Cancelled reminder: {job_id}")
        return True

    def cancel_reminder_for_course(self, course_id: Any, course_type: Any) -> int:
        """Cancel every pending reminder (standard and custom) of a course."""
        ctype = parse_course_type(course_type)
        if not course_id or ctype is None:
            return 0
        return sum(1 for job_id in self._find_jobs(str(course_id), ctype) if self.cancel_reminder(job_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the startup sweep and the periodic maintenance tasks."""
        if self.is_shutting_down or self._background_tasks:
            return

        async def _bootstrap() -> None:
            await asyncio.sleep(self.settings.BOOTSTRAP_DELAY_SECONDS)
            await self.schedule_all_upcoming_reminders()

        async def _cleanup() -> None:
            self.cleanup_old_data()

        tasks = [
            asyncio.create_task(_bootstrap(), name="course-reminders-bootstrap"),
            self._start_periodic("course-reminders-cleanup", self.settings.CLEANUP_INTERVAL_SECONDS, _cleanup),
        ]
        if self.settings.RESCAN_INTERVAL_SECONDS:
            tasks.append(
                self._start_periodic(
                    "course-reminders-rescan",
                    self.settings.RESCAN_INTERVAL_SECONDS,
                    self.schedule_all_upcoming_reminders,
                )
            )
        self._background_tasks = tasks
        logger.info("🚀 [Reminders] Course reminder scheduler started")

    @staticmethod
    def _start_periodic(name: str, interval_seconds: float, func: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        async def _runner() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await func()
                except Exception:
                    logger.exception(f"❌ [Reminders] Periodic task {name} failed")

        return asyncio.create_task(_runner(), name=name)

    def shutdown(self) -> int:
        """Stop firing, cancel all pending reminders and return how many were cancelled."""
        if self.is_shutting_down:
            logger.info("ℹ️ [Reminders] Scheduler already shut down")
            return 0

        logger.info("📧 [Reminders] Shutting down course reminder scheduler...")
        self.is_shutting_down = True

        for task in self._background_tasks:
            task.cancel()
        self._background_tasks = []

        cancelled = 0
        for job_id, job in list(self._jobs.items()):
            self._cancel_task(job)
            cancelled += 1
            logger.info(f"❌ [Reminders] Cancelled reminder job: {job_id}")
        self._jobs.clear()
        course_reminders_pending.set(0)

        logger.info(f"✅ [Reminders] Course reminder scheduler shutdown complete ({cancelled} jobs cancelled)")
        return cancelled

    def cleanup_old_data(self) -> CleanupResult:
        """Trim history to the configured size and drop jobs stuck long past their fire time."""
        now = self._clock()
        limit = self.settings.HISTORY_LIMIT

        newest_first = sorted(self._history, key=lambda e: e.executed_at, reverse=True)
        kept = newest_first[:limit]
        self._history = deque(reversed(kept), maxlen=limit)

        stale_cutoff = now - timedelta(hours=self.settings.STALE_JOB_HOURS)
        stale = [job_id for job_id, job in self._jobs.items() if job.reminder.fire_at < stale_cutoff]
        for job_id in stale:
            self._cancel_task(self._jobs.pop(job_id))
            logger.warning(f"🧹 [Reminders] Removed stale reminder job: {job_id}")
        if stale:
            course_reminders_pending.set(len(self._jobs))

        self._stats.last_cleanup = now
        result = CleanupResult(
            history_trimmed=len(newest_first) - len(kept),
            stale_jobs_removed=len(stale),
            history_size=len(self._history),
            cleaned_at=now,
        )
        logger.info(
            f"🧹 [Reminders] Cleanup complete: {result.history_trimmed} history entries trimmed, "
            f"{result.stale_jobs_removed} stale jobs removed"
        )
        return result

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def stats(self) -> SchedulerStats:
        return self._stats.model_copy()

    def get_scheduled_reminders(self) -> List[ScheduledReminderView]:
        now = self._clock()
        today = to_local(now).date()
        views = []
        for job in sorted(self._jobs.values(), key=lambda j: j.reminder.fire_at):
            reminder = job.reminder
            seconds = (reminder.fire_at - now).total_seconds()
            views.append(
                ScheduledReminderView(
                    **reminder.model_dump(),
                    days_from_now=math.floor(seconds / 86400),
                    is_overdue=seconds <= 0,
                    is_today=to_local(reminder.fire_at).date() == today,
                )
            )
        return views

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            total_scheduled=len(self._jobs),
            is_shutting_down=self.is_shutting_down,
            stats=self.stats,
            reminders=self.get_scheduled_reminders(),
        )

    def get_reminder_history(self, limit: Optional[int] = 50, status: Optional[str] = None) -> List[ReminderHistoryEntry]:
        """History entries newest first, optionally filtered by status."""
        entries = [e for e in reversed(self._history) if status is None or e.status == status]
        if limit is None:
            return entries
        return entries[:max(limit, 0)]

    def get_detailed_statistics(self) -> DetailedStatistics:
        now = self._clock()
        pending = [job.reminder for job in self._jobs.values()]

        by_course_type: Dict[str, int] = {}
        by_email_type: Dict[str, int] = {}
        for reminder in pending:
            by_course_type[reminder.course_type.value] = by_course_type.get(reminder.course_type.value, 0) + 1
            by_email_type[reminder.email_type.value] = by_email_type.get(reminder.email_type.value, 0) + 1

        sent = sum(e.success_count for e in self._history)
        failed = sum(e.failure_count for e in self._history)

        return DetailedStatistics(
            stats=self.stats,
            pending_jobs=len(pending),
            pending_by_course_type=by_course_type,
            pending_by_email_type=by_email_type,
            pending_recipients=sum(r.recipient_count for r in pending),
            due_within_24h=sum(1 for r in pending if r.fire_at <= now + timedelta(hours=24)),
            due_within_7d=sum(1 for r in pending if r.fire_at <= now + timedelta(days=7)),
            history_size=len(self._history),
            history_completed=sum(1 for e in self._history if e.status == "completed"),
            history_failed=sum(1 for e in self._history if e.status == "failed"),
            success_rate=round(sent / (sent + failed) * 100, 2) if sent + failed else None,
            generated_at=now,
        )

    def health_check(self) -> HealthStatus:
        now = self._clock()
        overdue = sum(
            1 for job in self._jobs.values()
            if not job.fired and job.reminder.fire_at < now - OVERDUE_GRACE
        )
        recent_failures = sum(
            1 for e in self._history
            if e.status == "failed" and e.executed_at >= now - timedelta(hours=24)
        )

        issues = []
        if overdue:
            issues.append(f"{overdue} reminder jobs are overdue")
        if recent_failures:
            issues.append(f"{recent_failures} reminder jobs failed in the last 24h")

        if self.is_shutting_down:
            status = "stopped"
        elif issues:
            status = "degraded"
        else:
            status = "healthy"

        return HealthStatus(
            status=status,
            pending_jobs=len(self._jobs),
            overdue_jobs=overdue,
            recent_failures=recent_failures,
            issues=issues,
            checked_at=now,
        )
