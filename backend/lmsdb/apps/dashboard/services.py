from __future__ import annotations

from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from lmsdb.security import SessionUser
from lmsdb.apps.accounts.models import User
from lmsdb.apps.certificates.models import Certificate, CertificateType
from lmsdb.apps.courses import services as course_services
from lmsdb.apps.courses.models import Course, CourseModule, Enrollment, Lesson, UserProgress
from . import schemas

DASHBOARD_COURSE_LIMIT = 3
TOP_COURSES_LIMIT = 5


# ---------------------------------------------------------------------------
# Learner dashboard
# ---------------------------------------------------------------------------


def _lesson_totals(db: Session) -> Dict[str, int]:
    """Lesson count per course, for courses that have at least one lesson."""
    rows = (
        db.query(CourseModule.course_id, func.count(Lesson.id))
        .join(Lesson, Lesson.module_id == CourseModule.id)
        .group_by(CourseModule.course_id)
        .all()
    )
    return dict(rows)


def _completed_counts(db: Session, *, user_id: str) -> Dict[str, int]:
    rows = (
        db.query(CourseModule.course_id, func.count(UserProgress.lesson_id))
        .select_from(UserProgress)
        .join(Lesson, UserProgress.lesson_id == Lesson.id)
        .join(CourseModule, Lesson.module_id == CourseModule.id)
        .filter(UserProgress.user_id == user_id, UserProgress.completed.is_(True))
        .group_by(CourseModule.course_id)
        .all()
    )
    return dict(rows)


def learner_dashboard(
    db: Session,
    *,
    user: SessionUser,
    limit: int = DASHBOARD_COURSE_LIMIT,
) -> schemas.DashboardRead:
    """
    Completed-course count, skills acquired (distinct categories of completed
    courses) and up to `limit` unfinished courses the learner has started or
    can open, by title.
    """
    totals = _lesson_totals(db)
    done = _completed_counts(db, user_id=user.id)

    completed_ids = {
        course_id for course_id, total in totals.items() if done.get(course_id, 0) >= total
    }
    candidate_ids = set(done) | set(course_services.accessible_course_ids(db, user=user))
    course_ids = (completed_ids | candidate_ids) & set(totals)
    courses = (
        db.query(Course).filter(Course.id.in_(course_ids)).order_by(Course.title.asc()).all()
        if course_ids
        else []
    )

    skills = {course.category for course in courses if course.id in completed_ids and course.category}
    cards: List[schemas.CourseProgressCard] = []
    for course in courses:
        if course.id in completed_ids or course.id not in candidate_ids:
            continue
        cards.append(
            schemas.CourseProgressCard(
                id=course.id,
                title=course.title,
                category=course.category or "General",
                progress=course_services.progress_percent(done.get(course.id, 0), totals[course.id]),
            )
        )

    return schemas.DashboardRead(
        stats=schemas.DashboardStats(
            courses_completed=len(completed_ids),
            skills_acquired=len(skills),
        ),
        my_courses=cards[:limit],
    )


# ---------------------------------------------------------------------------
# Admin analytics
# ---------------------------------------------------------------------------


def _completions_by_month(db: Session) -> List[schemas.MonthlyCompletions]:
    dates = (
        db.query(Certificate.completion_date)
        .filter(Certificate.type == CertificateType.COMPLETION)
        .order_by(Certificate.completion_date.asc())
        .all()
    )
    months: Dict[str, schemas.MonthlyCompletions] = {}
    for (completed_at,) in dates:
        key = f"{completed_at:%Y-%m}"
        if key not in months:
            months[key] = schemas.MonthlyCompletions(
                month=key, label=f"{completed_at:%b %Y}", completions=0
            )
        months[key].completions += 1
    return list(months.values())


def site_analytics(db: Session, *, top: int = TOP_COURSES_LIMIT) -> schemas.AnalyticsRead:
    totals = schemas.AnalyticsTotals(
        total_users=db.query(User).count(),
        total_courses=db.query(Course).count(),
        total_enrollments=db.query(Enrollment).count(),
        courses_completed=db.query(Certificate)
        .filter(Certificate.type == CertificateType.COMPLETION)
        .count(),
    )

    enrollment_count = func.count(Enrollment.user_id)
    rows = (
        db.query(Course.id, Course.title, enrollment_count)
        .outerjoin(Enrollment, Enrollment.course_id == Course.id)
        .group_by(Course.id, Course.title)
        .order_by(enrollment_count.desc(), Course.title.asc())
        .limit(top)
        .all()
    )

    return schemas.AnalyticsRead(
        totals=totals,
        top_courses=[
            schemas.CourseEnrollmentCount(course_id=course_id, title=title, enrollments=count)
            for course_id, title, count in rows
        ],
        completions_by_month=_completions_by_month(db),
    )
