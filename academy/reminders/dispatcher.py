import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Tuple

from academy.utils.timezone import to_local, parse_datetime
from .schemas import CourseSummary, EmailType, Recipient

logger = logging.getLogger(__name__)


class ReminderDeliveryError(Exception):
    """A reminder email could not be delivered to one recipient."""


# Specialised mailer method per email type
_SENDERS = {
    EmailType.COURSE_STARTING: "send_course_starting_reminder",
    EmailType.PREPARATION: "send_preparation_reminder",
    EmailType.TECH_CHECK: "send_tech_check_reminder",
    EmailType.CUSTOM: "send_custom_course_message",
}


def _format_start(course: CourseSummary) -> str:
    start = to_local(parse_datetime(course.start_date))
    return start.strftime("%A %d %B %Y at %H:%M") if start else "soon"


def build_fallback_email(
    email_type: EmailType,
    user: Recipient,
    course: CourseSummary,
    custom_message: Optional[str] = None,
) -> Tuple[str, str]:
    """Default plain-text subject and body used when no template is available."""
    title = course.display_name
    greeting = f"Hello {user.name or 'there'},"

    if email_type == EmailType.CUSTOM:
        subject = f"Important Update: {title}"
        text = custom_message or ""
    elif email_type == EmailType.PREPARATION:
        subject = f"Get ready for {title}"
        text = (
            f"{title} starts on {_format_start(course)}. "
            "Please review the course materials and arrive prepared."
        )
    elif email_type == EmailType.TECH_CHECK:
        subject = f"Tech Check Reminder: {title}"
        text = (
            f"Please test your camera, microphone and connection before {title} "
            f"starts on {_format_start(course)}."
        )
    else:
        subject = f"Reminder: {title} starts tomorrow!"
        text = f"This is a reminder that {title} starts on {_format_start(course)}."

    body = f"{greeting}\n\n{text}\n\nBest regards,\nThe Academy Team"
    return subject, body


async def _call(func: Callable[..., Any], *args: Any) -> Any:
    if inspect.iscoroutinefunction(func):
        return await func(*args)
    # Blocking senders (SMTP) run off the event loop
    result = await asyncio.to_thread(func, *args)
    if inspect.isawaitable(result):
        return await result
    return result


async def send_reminder_email(
    mailer: Any,
    email_type: EmailType,
    user: Recipient,
    course: CourseSummary,
    custom_message: Optional[str] = None,
    timeout: Optional[float] = None,
) -> None:
    """Send one typed reminder, falling back to a plain email when the
    specialised sender is unavailable.

    Raises ReminderDeliveryError when the mailer reports failure or the send
    does not finish within ``timeout`` seconds.
    """
    sender = getattr(mailer, _SENDERS[email_type], None)
    if sender is not None:
        args: tuple = (user, course, custom_message) if email_type == EmailType.CUSTOM else (user, course)
    else:
        fallback = getattr(mailer, "send_plain_email", None)
        if fallback is None:
            raise ReminderDeliveryError(f"No sender available for {email_type.value} emails")
        logger.warning(
            f"⚠️ [Reminders] No {email_type.value} template available - sending plain email to {user.email}"
        )
        subject, body = build_fallback_email(email_type, user, course, custom_message)
        sender, args = fallback, (user.email, subject, body)

    try:
        result = await asyncio.wait_for(_call(sender, *args), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ReminderDeliveryError(f"Timed out after {timeout}s sending to {user.email}") from e

    if result is False:
        raise ReminderDeliveryError(f"Mailer reported failure for {user.email}")
