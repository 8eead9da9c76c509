"""
Tests for the SQL-backed course directory and reminder history store,
run against an in-memory SQLite database.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from academy.db.base import Base
from academy.models.course import (
    CourseEnrollment,
    CourseReminderLog,
    InPersonCourse,
    OnlineLiveCourse,
    Student,
)
from academy.reminders import repository
from academy.reminders.repository import SqlCourseDirectory, SqlReminderHistoryStore
from academy.reminders.schemas import (
    UPCOMING_COURSE_STATUSES,
    CourseType,
    EmailType,
    ReminderHistoryEntry,
)


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seeded(db):
    db.add_all([
        InPersonCourse(id="ip-1", title="Dermal Fillers Foundation", course_code="DF-01",
                       start_date=NOW + timedelta(days=5), status="open"),
        InPersonCourse(id="ip-2", title="Advanced Botox", course_code="AB-02",
                       start_date=NOW + timedelta(days=12), status="full"),
        InPersonCourse(id="ip-3", title="Draft Course", course_code="DR-03",
                       start_date=NOW + timedelta(days=6), status="draft"),
        InPersonCourse(id="ip-4", title="Next Quarter", course_code="NQ-04",
                       start_date=NOW + timedelta(days=90), status="open"),
        OnlineLiveCourse(id="ol-1", title="Skin Science Live", course_code="SS-01",
                         start_date=NOW + timedelta(days=3), status="open",
                         platform="Zoom", tech_check_date=NOW + timedelta(days=2)),
        Student(id="s1", email="ada@example.com", first_name="Ada", last_name="Lovelace"),
        Student(id="s2", email="grace@example.com", first_name="Grace"),
        Student(id="s3", email="alan@example.com"),
    ])
    db.flush()
    db.add_all([
        CourseEnrollment(student_id="s1", course_id="ip-1", course_type="in-person", status="paid",
                         enrolled_at=datetime(2026, 1, 1), updated_at=datetime(2026, 1, 1)),
        CourseEnrollment(student_id="s2", course_id="ip-1", course_type="in-person", status="registered",
                         enrolled_at=datetime(2026, 1, 2), updated_at=datetime(2026, 1, 2)),
        CourseEnrollment(student_id="s3", course_id="ip-1", course_type="in-person", status="wishlist",
                         enrolled_at=datetime(2026, 1, 3), updated_at=datetime(2026, 1, 3)),
        # Duplicate row for the same student and course
        CourseEnrollment(student_id="s1", course_id="ip-1", course_type="in-person", status="registered",
                         enrolled_at=datetime(2026, 1, 4), updated_at=datetime(2026, 1, 4)),
        # Same id, different course type
        CourseEnrollment(student_id="s3", course_id="ip-1", course_type="online-live", status="paid",
                         enrolled_at=datetime(2026, 1, 5), updated_at=datetime(2026, 1, 5)),
        CourseEnrollment(student_id="s3", course_id="ol-1", course_type="online-live", status="paid",
                         enrolled_at=datetime(2026, 1, 1), updated_at=datetime(2026, 1, 1)),
        CourseEnrollment(student_id="s3", course_id="ol-1", course_type="online-live", status="cancelled",
                         enrolled_at=datetime(2026, 1, 1), updated_at=datetime(2026, 2, 1)),
    ])
    db.commit()
    return db


class TestCourseQueries:

    def test_get_course_returns_summary(self, seeded):
        course = repository.get_course(seeded, "ol-1", CourseType.ONLINE_LIVE)

        assert course.id == "ol-1"
        assert course.course_type == CourseType.ONLINE_LIVE
        assert course.display_name == "Skin Science Live"
        assert course.code == "SS-01"
        assert course.start_date == NOW + timedelta(days=3)
        assert course.start_date.tzinfo is not None
        assert course.platform == "Zoom"
        assert course.tech_check_date == NOW + timedelta(days=2)

    def test_get_course_respects_course_type(self, seeded):
        assert repository.get_course(seeded, "ip-1", CourseType.ONLINE_LIVE) is None
        assert repository.get_course(seeded, "ip-1", CourseType.SELF_PACED) is None
        assert repository.get_course(seeded, "missing", CourseType.IN_PERSON) is None

    def test_list_upcoming_courses_filters_window_and_status(self, seeded):
        courses = repository.list_upcoming_courses(
            seeded,
            CourseType.IN_PERSON,
            NOW + timedelta(days=1),
            NOW + timedelta(days=31),
            UPCOMING_COURSE_STATUSES,
        )

        assert [c.id for c in courses] == ["ip-1", "ip-2"]

    def test_list_upcoming_courses_unknown_type(self, seeded):
        assert repository.list_upcoming_courses(
            seeded, CourseType.SELF_PACED, NOW, NOW + timedelta(days=31), UPCOMING_COURSE_STATUSES
        ) == []


class TestEnrollmentQueries:

    def test_enrolled_users_are_eligible_deduplicated_and_ordered(self, seeded):
        users = repository.list_enrolled_users(seeded, "ip-1", CourseType.IN_PERSON)

        assert [u.user_id for u in users] == ["s1", "s2"]
        assert users[0].email == "ada@example.com"
        assert users[0].name == "Ada Lovelace"
        assert users[1].name == "Grace"

    def test_enrollment_status_uses_latest_row(self, seeded):
        assert repository.get_enrollment_status(seeded, "s3", "ol-1", CourseType.ONLINE_LIVE) == "cancelled"
        assert repository.get_enrollment_status(seeded, "s3", "ip-1", CourseType.IN_PERSON) == "wishlist"
        assert repository.get_enrollment_status(seeded, "s2", "ol-1", CourseType.ONLINE_LIVE) is None


class TestHistoryLog:

    def test_append_course_reminder_log(self, db):
        entry = ReminderHistoryEntry(
            job_id="reminder-in-person-ip-1-1-1",
            course_id="ip-1",
            course_type=CourseType.IN_PERSON,
            course_name="Dermal Fillers Foundation",
            fire_at=NOW,
            recipient_count=3,
            email_type=EmailType.COURSE_STARTING,
            executed_at=NOW + timedelta(seconds=4),
            success_count=1,
            failure_count=1,
            skipped_count=1,
            status="completed",
        )

        log = repository.append_course_reminder_log(db, "ip-1", CourseType.IN_PERSON, entry)

        stored = db.get(CourseReminderLog, log.id)
        assert stored.course_type == "in-person"
        assert stored.job_id == entry.job_id
        assert stored.email_type == "course-starting"
        assert (stored.success_count, stored.failure_count, stored.skipped_count) == (1, 1, 1)
        assert stored.error is None


class TestAsyncAdapters:

    @pytest.mark.asyncio
    async def test_directory_runs_queries_in_fresh_sessions(self, session_factory, seeded):
        directory = SqlCourseDirectory(session_factory=session_factory)

        course = await directory.get_course("ip-1", CourseType.IN_PERSON)
        users = await directory.get_enrolled_users("ip-1", CourseType.IN_PERSON)
        status = await directory.get_enrollment_status("s2", "ip-1", CourseType.IN_PERSON)
        upcoming = await directory.list_upcoming_courses(
            CourseType.ONLINE_LIVE, NOW, NOW + timedelta(days=31), UPCOMING_COURSE_STATUSES
        )

        assert course.title == "Dermal Fillers Foundation"
        assert [u.user_id for u in users] == ["s1", "s2"]
        assert status == "registered"
        assert [c.id for c in upcoming] == ["ol-1"]

    @pytest.mark.asyncio
    async def test_history_store_persists_entries(self, session_factory, db):
        store = SqlReminderHistoryStore(session_factory=session_factory)
        entry = ReminderHistoryEntry(
            job_id="custom-custom-online-live-ol-1-1-2",
            course_id="ol-1",
            course_type=CourseType.ONLINE_LIVE,
            course_name="Skin Science Live",
            fire_at=NOW,
            recipient_count=2,
            email_type=EmailType.CUSTOM,
            custom_message="Room change",
            is_custom=True,
            executed_at=NOW,
            success_count=0,
            failure_count=2,
            status="failed",
            error="smtp down",
        )

        await store.append_course_reminder_log("ol-1", CourseType.ONLINE_LIVE, entry)

        [log] = db.query(CourseReminderLog).all()
        assert log.course_id == "ol-1"
        assert log.status == "failed"
        assert log.error == "smtp down"
