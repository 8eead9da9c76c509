from prometheus_client import Counter, Gauge


course_reminders_scheduled_total = Counter(
    "course_reminders_scheduled_total",
    "Total course reminder jobs scheduled",
    ["kind"],
)

course_reminders_cancelled_total = Counter(
    "course_reminders_cancelled_total",
    "Total course reminder jobs cancelled before firing",
)

course_reminders_executed_total = Counter(
    "course_reminders_executed_total",
    "Total course reminder jobs executed",
    ["status"],
)

course_reminder_emails_sent_total = Counter(
    "course_reminder_emails_sent_total",
    "Total reminder emails sent successfully",
)

course_reminder_emails_failed_total = Counter(
    "course_reminder_emails_failed_total",
    "Total reminder emails that failed to send",
)

course_reminder_emails_skipped_total = Counter(
    "course_reminder_emails_skipped_total",
    "Total recipients skipped because they were no longer enrolled",
)

course_reminders_pending = Gauge(
    "course_reminders_pending",
    "Reminder jobs currently waiting to fire",
)
