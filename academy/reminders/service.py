import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from academy.core.config import settings as app_settings
from academy.core.logging import configure_logging
from academy.services.email_service import EmailService
from .api import router as reminders_router
from .config import ReminderSettings, settings as reminder_settings
from .contracts import CourseDirectory, ReminderHistoryStore
from .repository import SqlCourseDirectory, SqlReminderHistoryStore
from .scheduler import CourseReminderScheduler

logger = logging.getLogger(__name__)


def create_app(
    directory: Optional[CourseDirectory] = None,
    mailer: Any = None,
    history_store: Optional[ReminderHistoryStore] = None,
    settings: Optional[ReminderSettings] = None,
) -> FastAPI:
    """Build the reminder service app. The scheduler lives for the app's lifespan."""
    settings = settings or reminder_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up course reminder service...")
        scheduler = CourseReminderScheduler(
            directory=directory or SqlCourseDirectory(),
            mailer=mailer or EmailService(),
            history_store=history_store or SqlReminderHistoryStore(),
            settings=settings,
        )
        app.state.reminder_scheduler = scheduler
        scheduler.start()
        try:
            yield
        finally:
            logger.info("Shutting down course reminder service...")
            scheduler.shutdown()
            logger.info("✅ Course reminder service shutdown complete")

    app = FastAPI(title=f"{app_settings.PROJECT_NAME} - Course Reminders", lifespan=lifespan)
    app.include_router(
        reminders_router,
        prefix=f"{app_settings.API_V1_STR}/course-reminders",
        tags=["course-reminders"],
    )
    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


def main() -> FastAPI:
    configure_logging()
    return create_app()
