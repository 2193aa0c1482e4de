from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import atomic
from lmsdb.security import SessionUser
from lmsdb.apps.accounts import models as account_models
from lmsdb.apps.assessments import grading
from lmsdb.apps.assessments import models as assessment_models
from lmsdb.apps.certificates import models as certificate_models
from lmsdb.apps.certificates import services as certificate_services
from lmsdb.apps.certificates.models import CertificateType
from lmsdb.apps.payments import models as payment_models
from lmsdb.apps.payments.models import TransactionStatus
from . import models, schemas
from .models import LessonType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LessonCompletion:
    next_lesson_id: Optional[str] = None
    certificate_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_course(db: Session, course_id: str) -> models.Course:
    course = db.get(models.Course, course_id)
    if course is None:
        raise errors.NotFoundError("Course not found.")
    return course


def get_lesson_in_course(db: Session, *, course_id: str, lesson_id: str) -> models.Lesson:
    lesson = (
        db.query(models.Lesson)
        .join(models.CourseModule, models.Lesson.module_id == models.CourseModule.id)
        .filter(
            models.Lesson.id == lesson_id,
            models.CourseModule.course_id == course_id,
        )
        .first()
    )
    if lesson is None:
        raise errors.NotFoundError("Lesson not found.")
    return lesson


def _course_lessons_query(course_id: str):
    return (
        select(models.Lesson.id)
        .join(models.CourseModule, models.Lesson.module_id == models.CourseModule.id)
        .where(models.CourseModule.course_id == course_id)
    )


def ordered_lesson_ids(db: Session, course_id: str) -> List[str]:
    """Lesson ids in reading order: module order, then lesson order."""
    rows = db.execute(
        _course_lessons_query(course_id).order_by(
            models.CourseModule.order.asc(),
            models.Lesson.order.asc(),
        )
    ).all()
    return [row.id for row in rows]


def completed_lesson_ids(db: Session, *, user_id: str, course_id: str) -> Set[str]:
    rows = (
        db.query(models.UserProgress.lesson_id)
        .join(models.Lesson, models.UserProgress.lesson_id == models.Lesson.id)
        .join(models.CourseModule, models.Lesson.module_id == models.CourseModule.id)
        .filter(
            models.UserProgress.user_id == user_id,
            models.UserProgress.completed.is_(True),
            models.CourseModule.course_id == course_id,
        )
        .all()
    )
    return {row.lesson_id for row in rows}


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(completed * 100 // total)


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------


def is_enrolled(db: Session, *, user_id: str, course_id: str) -> bool:
    return db.get(models.Enrollment, (user_id, course_id)) is not None


def has_course_access(db: Session, *, user: SessionUser, course_id: str) -> bool:
    """
    Admins always; otherwise an enrollment, or for External learners a
    pending or completed purchase of the course.
    """
    if user.is_admin:
        return True
    if is_enrolled(db, user_id=user.id, course_id=course_id):
        return True
    if user.is_external:
        purchase = (
            db.query(payment_models.Transaction.id)
            .filter(
                payment_models.Transaction.user_id == user.id,
                payment_models.Transaction.course_id == course_id,
                payment_models.Transaction.status.in_(
                    [TransactionStatus.PENDING, TransactionStatus.COMPLETED]
                ),
            )
            .first()
        )
        return purchase is not None
    return False


def require_course_access(db: Session, *, user: SessionUser, course_id: str) -> None:
    if not has_course_access(db, user=user, course_id=course_id):
        raise errors.PermissionDeniedError("You are not enrolled in this course.")


# ---------------------------------------------------------------------------
# Progress & completion
# ---------------------------------------------------------------------------


def _mark_lesson_completed(db: Session, *, user_id: str, lesson_id: str) -> bool:
    """Return True when the lesson was not already complete for the user."""
    progress = (
        db.query(models.UserProgress)
        .filter(
            models.UserProgress.user_id == user_id,
            models.UserProgress.lesson_id == lesson_id,
        )
        .with_for_update()
        .first()
    )
    if progress is not None:
        if progress.completed:
            return False
        progress.completed = True
        progress.completed_at = datetime.utcnow()
        db.flush()
        return True

    try:
        with db.begin_nested():
            db.add(
                models.UserProgress(
                    user_id=user_id,
                    lesson_id=lesson_id,
                    completed=True,
                    completed_at=datetime.utcnow(),
                )
            )
    except IntegrityError:
        # A concurrent request recorded the same completion first.
        return False
    return True


def record_lesson_completion(
    db: Session,
    *,
    user_id: str,
    site_id: str,
    course_id: str,
    lesson_id: str,
) -> LessonCompletion:
    """
    Mark a lesson complete and work out what happens next.

    Runs inside the caller's transaction. When the user has now completed
    every lesson of the course a completion certificate is issued; re-marking
    a lesson that was already complete never issues another one.
    """
    ordered = ordered_lesson_ids(db, course_id)
    if not ordered:
        return LessonCompletion()
    if lesson_id not in ordered:
        raise errors.NotFoundError("Lesson not found.")

    # Completions on the same course queue here, so the count below always
    # sees the lessons committed by the request ahead of this one.
    db.query(models.Course.id).filter(models.Course.id == course_id).with_for_update().first()
    newly_completed = _mark_lesson_completed(db, user_id=user_id, lesson_id=lesson_id)

    completed = completed_lesson_ids(db, user_id=user_id, course_id=course_id)
    if len(completed) == len(ordered):
        if newly_completed:
            certificate = certificate_services.issue_completion_certificate(
                db,
                site_id=site_id,
                user_id=user_id,
                course_id=course_id,
            )
            return LessonCompletion(certificate_id=certificate.id)
        latest = certificate_services.latest_completion_certificate(
            db, user_id=user_id, course_id=course_id
        )
        return LessonCompletion(certificate_id=latest.id if latest else None)

    position = ordered.index(lesson_id)
    if position + 1 < len(ordered):
        return LessonCompletion(next_lesson_id=ordered[position + 1])
    return LessonCompletion()


def complete_lesson(
    db: Session,
    *,
    user: SessionUser,
    site_id: str,
    course_id: str,
    lesson_id: str,
) -> LessonCompletion:
    get_course(db, course_id)
    require_course_access(db, user=user, course_id=course_id)

    with atomic(
        db,
        operation="complete_lesson",
        site_id=site_id,
        user_id=user.id,
        course_id=course_id,
        lesson_id=lesson_id,
    ):
        return record_lesson_completion(
            db,
            user_id=user.id,
            site_id=site_id,
            course_id=course_id,
            lesson_id=lesson_id,
        )


# ---------------------------------------------------------------------------
# Retake & retraining
# ---------------------------------------------------------------------------


def _reset_progress(db: Session, *, user_ids: Sequence[str], course_id: str) -> int:
    if not user_ids:
        return 0
    return (
        db.query(models.UserProgress)
        .filter(
            models.UserProgress.user_id.in_(list(user_ids)),
            models.UserProgress.lesson_id.in_(_course_lessons_query(course_id)),
        )
        .delete(synchronize_session=False)
    )


def _reset_final_attempts(db: Session, *, user_ids: Sequence[str], course_id: str) -> int:
    if not user_ids:
        return 0
    return (
        db.query(assessment_models.FinalAssessmentAttempt)
        .filter(
            assessment_models.FinalAssessmentAttempt.user_id.in_(list(user_ids)),
            assessment_models.FinalAssessmentAttempt.course_id == course_id,
        )
        .delete(synchronize_session=False)
    )


def retake_course(db: Session, *, user: SessionUser, site_id: str, course_id: str) -> None:
    """
    Start a course over: clears the learner's lesson progress and final
    assessment attempts. Certificates already issued are kept.
    """
    get_course(db, course_id)
    require_course_access(db, user=user, course_id=course_id)

    with atomic(db, operation="retake_course", site_id=site_id, user_id=user.id, course_id=course_id):
        _reset_progress(db, user_ids=[user.id], course_id=course_id)
        _reset_final_attempts(db, user_ids=[user.id], course_id=course_id)


def retrain_cohort(db: Session, *, site_id: str, course_id: str) -> int:
    """
    Reset progress for everyone holding a completion certificate for the
    course, so each of them earns a new certificate on the next completion.
    Returns the number of users reset.
    """
    get_course(db, course_id)

    holders = [
        row.user_id
        for row in db.query(certificate_models.Certificate.user_id)
        .filter(
            certificate_models.Certificate.course_id == course_id,
            certificate_models.Certificate.type == CertificateType.COMPLETION,
        )
        .distinct()
        .all()
    ]
    if not holders:
        return 0

    with atomic(db, operation="retrain_cohort", site_id=site_id, course_id=course_id):
        _reset_progress(db, user_ids=holders, course_id=course_id)
        _reset_final_attempts(db, user_ids=holders, course_id=course_id)

    logger.info(
        "Retraining started",
        extra={"site_id": site_id, "course_id": course_id, "users_reset": len(holders)},
    )
    return len(holders)


# ---------------------------------------------------------------------------
# Learner views
# ---------------------------------------------------------------------------


def list_available_courses(db: Session, *, user: SessionUser) -> List[schemas.CourseSummary]:
    """
    External learners see public courses with their price; everyone else sees
    internal and public courses without pricing.
    """
    query = db.query(models.Course)
    if user.is_external:
        query = query.filter(models.Course.is_public.is_(True))
    else:
        query = query.filter(
            (models.Course.is_internal.is_(True)) | (models.Course.is_public.is_(True))
        )
    courses = query.order_by(models.Course.title.asc()).all()

    summaries = [schemas.CourseSummary.model_validate(course) for course in courses]
    if not user.is_external:
        for summary in summaries:
            summary.price = None
    return summaries


def get_course_detail(db: Session, *, user: SessionUser, course_id: str) -> schemas.CourseDetail:
    course = get_course(db, course_id)
    require_course_access(db, user=user, course_id=course_id)

    done = completed_lesson_ids(db, user_id=user.id, course_id=course_id)
    modules: List[schemas.ModuleOutline] = []
    total = 0
    for module in course.modules:
        lessons = [
            schemas.LessonOutline(
                id=lesson.id,
                title=lesson.title,
                type=lesson.type,
                order=lesson.order,
                completed=lesson.id in done,
            )
            for lesson in module.lessons
        ]
        total += len(lessons)
        modules.append(
            schemas.ModuleOutline(id=module.id, title=module.title, order=module.order, lessons=lessons)
        )

    latest = certificate_services.latest_completion_certificate(db, user_id=user.id, course_id=course_id)
    summary = schemas.CourseSummary.model_validate(course)
    if not user.is_external:
        summary.price = None
    return schemas.CourseDetail(
        **summary.model_dump(),
        modules=modules,
        progress=progress_percent(len(done), total),
        is_enrolled=is_enrolled(db, user_id=user.id, course_id=course_id),
        has_pre_test=bool(course.pre_test_content),
        has_final_assessment=bool(course.final_assessment_content),
        latest_certificate_id=latest.id if latest else None,
    )


def get_lesson_detail(
    db: Session,
    *,
    user: SessionUser,
    course_id: str,
    lesson_id: str,
) -> schemas.LessonDetail:
    get_course(db, course_id)
    require_course_access(db, user=user, course_id=course_id)
    lesson = get_lesson_in_course(db, course_id=course_id, lesson_id=lesson_id)

    ordered = ordered_lesson_ids(db, course_id)
    position = ordered.index(lesson.id)
    completed = lesson.id in completed_lesson_ids(db, user_id=user.id, course_id=course_id)

    content = lesson.content
    questions = None
    if lesson.type == LessonType.QUIZ:
        questions = grading.student_view(grading.load_questions(lesson.content))
        content = None

    return schemas.LessonDetail(
        id=lesson.id,
        course_id=course_id,
        module_id=lesson.module_id,
        title=lesson.title,
        type=lesson.type,
        content=content,
        image_path=lesson.image_path,
        questions=questions,
        completed=completed,
        previous_lesson_id=ordered[position - 1] if position > 0 else None,
        next_lesson_id=ordered[position + 1] if position + 1 < len(ordered) else None,
    )


# ---------------------------------------------------------------------------
# Course administration
# ---------------------------------------------------------------------------


def list_courses(db: Session) -> List[models.Course]:
    return db.query(models.Course).order_by(models.Course.title.asc()).all()


def _lesson_content(lesson_in: schemas.LessonIn) -> Optional[str]:
    if lesson_in.type == LessonType.QUIZ and lesson_in.questions:
        return grading.dump_questions(lesson_in.questions)
    return lesson_in.content


def _apply_outline(db: Session, course: models.Course, modules_in: Sequence[schemas.ModuleIn]) -> None:
    """
    Make the course outline match `modules_in`.

    Modules and lessons carrying a known id are updated in place (so learner
    progress on them survives), unknown ones are created, and anything not
    listed is deleted. Orders are rewritten as 1..n in payload order.
    """
    existing_modules: Dict[str, models.CourseModule] = {m.id: m for m in course.modules}
    existing_lessons: Dict[str, models.Lesson] = {
        lesson.id: lesson for module in course.modules for lesson in module.lessons
    }

    # Park current positions below zero so rewriting them cannot collide
    # with the unique (parent, order) constraints mid-flush.
    for m_offset, module in enumerate(course.modules, start=1):
        module.order = -m_offset
        for l_offset, lesson in enumerate(module.lessons, start=1):
            lesson.order = -l_offset
    if existing_modules:
        db.flush()

    for m_index, module_in in enumerate(modules_in, start=1):
        module = existing_modules.pop(module_in.id, None) if module_in.id else None
        if module is None:
            module = models.CourseModule(title=module_in.title, order=m_index)
            course.modules.append(module)
        module.title = module_in.title
        module.order = m_index

        for l_index, lesson_in in enumerate(module_in.lessons, start=1):
            lesson = existing_lessons.pop(lesson_in.id, None) if lesson_in.id else None
            if lesson is None:
                lesson = models.Lesson(title=lesson_in.title, type=lesson_in.type, order=l_index)
                module.lessons.append(lesson)
            elif lesson.module is not module:
                lesson.module = module
            lesson.title = lesson_in.title
            lesson.type = lesson_in.type
            lesson.content = _lesson_content(lesson_in)
            lesson.image_path = lesson_in.image_path
            lesson.order = l_index

    # Leftovers are dropped from their collections; delete-orphan removes them.
    for lesson in existing_lessons.values():
        lesson.module.lessons.remove(lesson)
    for module in existing_modules.values():
        course.modules.remove(module)


def _apply_course_fields(course: models.Course, data: schemas.CourseIn) -> None:
    course.title = data.title
    course.description = data.description
    course.category = data.category
    course.image_path = data.image_path
    course.venue = data.venue
    course.start_date = data.start_date
    course.end_date = data.end_date
    course.is_internal = data.is_internal
    course.is_public = data.is_public
    course.price = data.price
    course.pre_test_content = grading.dump_questions(data.pre_test)
    course.pre_test_passing_rate = data.pre_test_passing_rate
    course.final_assessment_content = grading.dump_questions(data.final_assessment)
    course.passing_rate = data.passing_rate
    course.max_attempts = data.max_attempts


def _replace_signatories(db: Session, course: models.Course, signatory_ids: Sequence[str]) -> None:
    wanted = list(dict.fromkeys(signatory_ids))
    if wanted:
        found = {
            row.id
            for row in db.query(models.Signatory.id).filter(models.Signatory.id.in_(wanted)).all()
        }
        missing = [sid for sid in wanted if sid not in found]
        if missing:
            raise errors.NotFoundError("Signatory not found.", extra={"signatory_ids": missing})

    course.signatory_links = [
        models.CourseSignatory(signatory_id=sid) for sid in wanted
    ]


def create_course(db: Session, *, site_id: str, data: schemas.CourseIn) -> models.Course:
    course = models.Course(site_id=site_id)
    _apply_course_fields(course, data)

    with atomic(db, operation="create_course", site_id=site_id):
        db.add(course)
        _replace_signatories(db, course, data.signatory_ids)
        _apply_outline(db, course, data.modules)

    logger.info("Course created", extra={"site_id": site_id, "course_id": course.id})
    return course


def update_course(db: Session, *, course_id: str, data: schemas.CourseIn) -> models.Course:
    course = get_course(db, course_id)

    with atomic(db, operation="update_course", site_id=course.site_id, course_id=course_id):
        _apply_course_fields(course, data)
        _replace_signatories(db, course, data.signatory_ids)
        _apply_outline(db, course, data.modules)

    return course


def delete_course(db: Session, *, course_id: str) -> None:
    """
    Delete a course with its outline, enrollments, progress and attempts.

    Certificates and transactions survive with `course_id` cleared.
    """
    course = get_course(db, course_id)
    site_id = course.site_id

    with atomic(db, operation="delete_course", site_id=site_id, course_id=course_id):
        db.query(certificate_models.Certificate).filter(
            certificate_models.Certificate.course_id == course_id
        ).update({certificate_models.Certificate.course_id: None}, synchronize_session=False)
        db.query(payment_models.Transaction).filter(
            payment_models.Transaction.course_id == course_id
        ).update({payment_models.Transaction.course_id: None}, synchronize_session=False)
        db.query(models.UserProgress).filter(
            models.UserProgress.lesson_id.in_(_course_lessons_query(course_id))
        ).delete(synchronize_session=False)
        for attempt_model in (
            assessment_models.QuizAttempt,
            assessment_models.PreTestAttempt,
            assessment_models.FinalAssessmentAttempt,
        ):
            db.query(attempt_model).filter(attempt_model.course_id == course_id).delete(
                synchronize_session=False
            )
        db.query(models.Enrollment).filter(models.Enrollment.course_id == course_id).delete(
            synchronize_session=False
        )
        db.delete(course)

    logger.info("Course deleted", extra={"site_id": site_id, "course_id": course_id})


def set_course_signatories(db: Session, *, course_id: str, signatory_ids: Sequence[str]) -> models.Course:
    course = get_course(db, course_id)
    with atomic(db, operation="set_course_signatories", course_id=course_id):
        _replace_signatories(db, course, signatory_ids)
    return course


# ---------------------------------------------------------------------------
# Enrollments & progress reporting
# ---------------------------------------------------------------------------


def list_enrollments(db: Session, *, course_id: str) -> List[schemas.EnrollmentRead]:
    get_course(db, course_id)
    rows = (
        db.query(models.Enrollment, account_models.User)
        .outerjoin(account_models.User, account_models.User.id == models.Enrollment.user_id)
        .filter(models.Enrollment.course_id == course_id)
        .order_by(models.Enrollment.enrolled_at.asc())
        .all()
    )
    return [
        schemas.EnrollmentRead(
            user_id=enrollment.user_id,
            username=user.username if user else None,
            full_name=user.full_name if user else None,
            enrolled_at=enrollment.enrolled_at,
        )
        for enrollment, user in rows
    ]


def enroll_users(db: Session, *, course_id: str, user_ids: Sequence[str]) -> int:
    """Enroll users of this site; already-enrolled users are skipped."""
    get_course(db, course_id)
    wanted = list(dict.fromkeys(user_ids))

    known = {
        row.id
        for row in db.query(account_models.User.id).filter(account_models.User.id.in_(wanted)).all()
    }
    missing = [uid for uid in wanted if uid not in known]
    if missing:
        raise errors.NotFoundError("User not found.", extra={"user_ids": missing})

    already = {
        row.user_id
        for row in db.query(models.Enrollment.user_id)
        .filter(models.Enrollment.course_id == course_id, models.Enrollment.user_id.in_(wanted))
        .all()
    }
    new_ids = [uid for uid in wanted if uid not in already]

    with atomic(db, operation="enroll_users", course_id=course_id):
        db.add_all(models.Enrollment(user_id=uid, course_id=course_id) for uid in new_ids)

    return len(new_ids)


def unenroll_user(db: Session, *, course_id: str, user_id: str) -> None:
    enrollment = db.get(models.Enrollment, (user_id, course_id))
    if enrollment is None:
        raise errors.NotFoundError("Enrollment not found.")
    with atomic(db, operation="unenroll_user", course_id=course_id, user_id=user_id):
        db.delete(enrollment)


def bulk_update_enrollments(
    db: Session,
    *,
    course_id: str,
    user_ids: Sequence[str],
    action: str,
) -> int:
    """Enroll or unenroll a batch of users in one transaction. Returns rows changed."""
    get_course(db, course_id)
    wanted = list(dict.fromkeys(user_ids))
    if not wanted:
        return 0
    if action == "enroll":
        return enroll_users(db, course_id=course_id, user_ids=wanted)

    with atomic(db, operation="bulk_unenroll", course_id=course_id, users=len(wanted)):
        removed = (
            db.query(models.Enrollment)
            .filter(
                models.Enrollment.course_id == course_id,
                models.Enrollment.user_id.in_(wanted),
            )
            .delete(synchronize_session=False)
        )
    return removed


def enrolled_course_ids(db: Session, *, user_id: str) -> List[str]:
    rows = (
        db.query(models.Enrollment.course_id)
        .filter(models.Enrollment.user_id == user_id)
        .order_by(models.Enrollment.enrolled_at.asc())
        .all()
    )
    return [row.course_id for row in rows]


def user_enrollments(db: Session, *, user_id: str) -> List[str]:
    if db.get(account_models.User, user_id) is None:
        raise errors.NotFoundError("User not found.")
    return enrolled_course_ids(db, user_id=user_id)


def accessible_course_ids(db: Session, *, user: SessionUser) -> List[str]:
    """
    Enrolled courses, plus for External learners the courses with a pending or
    completed purchase (same rule as `has_course_access`).
    """
    ids = enrolled_course_ids(db, user_id=user.id)
    if user.is_external:
        purchased = (
            db.query(payment_models.Transaction.course_id)
            .filter(
                payment_models.Transaction.user_id == user.id,
                payment_models.Transaction.course_id.isnot(None),
                payment_models.Transaction.status.in_(
                    [TransactionStatus.PENDING, TransactionStatus.COMPLETED]
                ),
            )
            .order_by(payment_models.Transaction.transaction_date.asc())
            .all()
        )
        ids.extend(row.course_id for row in purchased)
    return list(dict.fromkeys(ids))


def list_categories(db: Session) -> List[str]:
    rows = (
        db.query(models.Course.category)
        .filter(models.Course.category.isnot(None), models.Course.category != "")
        .distinct()
        .order_by(models.Course.category.asc())
        .all()
    )
    return [row.category for row in rows]


def course_progress_report(db: Session, *, course_id: str) -> List[schemas.UserProgressRead]:
    """
    Per-enrolled-user progress. With a final assessment configured, 100% is
    reserved for users who passed it; lesson progress alone caps at 99%.
    """
    course = get_course(db, course_id)
    total = len(ordered_lesson_ids(db, course_id))
    has_final = bool(course.final_assessment_content)

    enrolled = list_enrollments(db, course_id=course_id)
    user_ids = [row.user_id for row in enrolled]
    if not user_ids:
        return []

    counts = dict(
        db.query(models.UserProgress.user_id, func.count(models.UserProgress.lesson_id))
        .filter(
            models.UserProgress.user_id.in_(user_ids),
            models.UserProgress.completed.is_(True),
            models.UserProgress.lesson_id.in_(_course_lessons_query(course_id)),
        )
        .group_by(models.UserProgress.user_id)
        .all()
    )
    passed_final = {
        row.user_id
        for row in db.query(assessment_models.FinalAssessmentAttempt.user_id)
        .filter(
            assessment_models.FinalAssessmentAttempt.user_id.in_(user_ids),
            assessment_models.FinalAssessmentAttempt.course_id == course_id,
            assessment_models.FinalAssessmentAttempt.passed.is_(True),
        )
        .all()
    }

    report: List[schemas.UserProgressRead] = []
    for row in enrolled:
        completed = counts.get(row.user_id, 0)
        percent = progress_percent(completed, total)
        if has_final:
            percent = 100 if row.user_id in passed_final else min(percent, 99)
        report.append(
            schemas.UserProgressRead(
                user_id=row.user_id,
                username=row.username,
                full_name=row.full_name,
                completed_lessons=completed,
                total_lessons=total,
                progress=percent,
            )
        )
    return report


# ---------------------------------------------------------------------------
# Signatories
# ---------------------------------------------------------------------------


def list_signatories(db: Session, *, site_id: str) -> List[models.Signatory]:
    return (
        db.query(models.Signatory)
        .filter(models.Signatory.site_id == site_id)
        .order_by(models.Signatory.name.asc())
        .all()
    )


def _require_signatory(db: Session, *, site_id: str, signatory_id: str) -> models.Signatory:
    signatory = db.get(models.Signatory, signatory_id)
    if signatory is None or signatory.site_id != site_id:
        raise errors.NotFoundError("Signatory not found.")
    return signatory


def create_signatory(db: Session, *, site_id: str, data: schemas.SignatoryCreate) -> models.Signatory:
    signatory = models.Signatory(site_id=site_id, **data.model_dump())
    with atomic(db, operation="create_signatory", site_id=site_id):
        db.add(signatory)
    return signatory


def update_signatory(
    db: Session,
    *,
    site_id: str,
    signatory_id: str,
    data: schemas.SignatoryUpdate,
) -> models.Signatory:
    signatory = _require_signatory(db, site_id=site_id, signatory_id=signatory_id)
    with atomic(db, operation="update_signatory", site_id=site_id, signatory_id=signatory_id):
        for name, value in data.model_dump(exclude_unset=True).items():
            if value is not None or name == "position":
                setattr(signatory, name, value)
    return signatory


def delete_signatory(db: Session, *, site_id: str, signatory_id: str) -> None:
    """Signatories printed on issued certificates cannot be removed."""
    signatory = _require_signatory(db, site_id=site_id, signatory_id=signatory_id)
    on_certificates = (
        db.query(certificate_models.CertificateSignatory.certificate_id)
        .filter(certificate_models.CertificateSignatory.signatory_id == signatory_id)
        .first()
    )
    if on_certificates is not None:
        raise errors.ConflictError("Signatory appears on issued certificates and cannot be deleted.")

    with atomic(db, operation="delete_signatory", site_id=site_id, signatory_id=signatory_id):
        db.query(models.CourseSignatory).filter(
            models.CourseSignatory.signatory_id == signatory_id
        ).delete(synchronize_session=False)
        db.delete(signatory)
