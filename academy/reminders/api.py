import logging
from datetime import timedelta
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from academy.core.security import verify_api_key_dependency
from academy.utils.timezone import parse_datetime
from .scheduler import CourseReminderScheduler
from .schemas import (
    CancelResult,
    CleanupResult,
    DetailedStatistics,
    HealthStatus,
    ReminderHistoryEntry,
    ReminderScheduled,
    ScheduleAllResult,
    ScheduleCustomReminderRequest,
    ScheduledReminderView,
    SchedulerStatus,
    ScheduleReminderRequest,
    parse_course_type,
)


logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_key_dependency)])


def get_scheduler(request: Request) -> CourseReminderScheduler:
    scheduler = getattr(request.app.state, "reminder_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Reminder scheduler is not running")
    return scheduler


@router.get("/status", response_model=SchedulerStatus)
async def get_status(scheduler: CourseReminderScheduler = Depends(get_scheduler)):
    return scheduler.get_status()


@router.get("/", response_model=List[ScheduledReminderView])
async def list_scheduled_reminders(scheduler: CourseReminderScheduler = Depends(get_scheduler)):
    return scheduler.get_scheduled_reminders()


@router.get("/history", response_model=List[ReminderHistoryEntry])
async def get_history(
    limit: int = 50,
    status: Optional[Literal["completed", "failed"]] = None,
    scheduler: CourseReminderScheduler = Depends(get_scheduler),
):
    return scheduler.get_reminder_history(limit=limit, status=status)


@router.get("/statistics", response_model=DetailedStatistics)
async def get_statistics(scheduler: CourseReminderScheduler = Depends(get_scheduler)):
    return scheduler.get_detailed_statistics()


@router.get("/health", response_model=HealthStatus)
async def health_check(scheduler: CourseReminderScheduler = Depends(get_scheduler)):
    return scheduler.health_check()


@router.post("/schedule", response_model=ReminderScheduled)
async def schedule_reminder(
    payload: ScheduleReminderRequest,
    scheduler: CourseReminderScheduler = Depends(get_scheduler),
):
    job_id = await scheduler.schedule_reminder_for_course(payload.course_id, payload.course_type)
    if not job_id:
        raise HTTPException(status_code=400, detail="Failed to schedule course reminder")
    return ReminderScheduled(job_id=job_id)


@router.post("/custom", response_model=ReminderScheduled)
async def schedule_custom_reminder(
    payload: ScheduleCustomReminderRequest,
    scheduler: CourseReminderScheduler = Depends(get_scheduler),
):
    send_at = payload.send_at
    if send_at is None:
        # Default to the usual lead time before the course starts
        course_type = parse_course_type(payload.course_type)
        try:
            course = await scheduler.directory.get_course(payload.course_id, course_type) if course_type else None
        except Exception:
            logger.exception(f"❌ [Reminders] Error loading course {payload.course_id}")
            raise HTTPException(status_code=503, detail="Course directory unavailable")
        if course is None:
            raise HTTPException(status_code=404, detail="Course not found")
        start_date = parse_datetime(course.start_date)
        if start_date is None:
            raise HTTPException(status_code=400, detail="Course has no valid start date")
        send_at = start_date - timedelta(hours=scheduler.settings.LEAD_TIME_HOURS)

    job_id = await scheduler.schedule_custom_reminder(
        payload.course_id,
        payload.course_type,
        send_at,
        payload.email_type,
        payload.custom_message,
    )
    if not job_id:
        raise HTTPException(status_code=400, detail="Failed to schedule reminder")
    return ReminderScheduled(job_id=job_id)


@router.post("/schedule-all", response_model=ScheduleAllResult)
async def schedule_all(scheduler: CourseReminderScheduler = Depends(get_scheduler)):
    return ScheduleAllResult(scheduled=await scheduler.schedule_all_upcoming_reminders())


@router.post("/cleanup", response_model=CleanupResult)
async def cleanup(scheduler: CourseReminderScheduler = Depends(get_scheduler)):
    return scheduler.cleanup_old_data()


@router.delete("/courses/{course_type}/{course_id}", response_model=CancelResult)
async def cancel_course_reminders(
    course_type: str,
    course_id: str,
    scheduler: CourseReminderScheduler = Depends(get_scheduler),
):
    return CancelResult(cancelled=scheduler.cancel_reminder_for_course(course_id, course_type))


@router.delete("/{job_id}", status_code=204)
async def cancel_reminder(job_id: str, scheduler: CourseReminderScheduler = Depends(get_scheduler)):
    if not scheduler.cancel_reminder(job_id):
        raise HTTPException(status_code=404, detail="Reminder not found, already cancelled or already sending")
    return Response(status_code=204)
