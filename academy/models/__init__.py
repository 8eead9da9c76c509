from .course import (
    InPersonCourse,
    OnlineLiveCourse,
    Student,
    CourseEnrollment,
    CourseReminderLog,
)
