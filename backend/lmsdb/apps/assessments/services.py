from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import atomic
from lmsdb.security import SessionUser
from lmsdb.apps.courses import services as course_services
from lmsdb.apps.courses.models import Course, LessonType
from . import grading, models, schemas
from .grading import DEFAULT_PASSING_RATE, GradeResult

logger = logging.getLogger(__name__)


def _questions_or_404(raw: Optional[str], *, label: str) -> List[schemas.Question]:
    try:
        questions = grading.load_questions(raw)
    except grading.InvalidContentError:
        logger.exception("Stored %s content is malformed", label)
        raise
    if not questions:
        raise errors.NotFoundError(f"This course has no {label}.")
    return questions


def _accessible_course(db: Session, *, user: SessionUser, course_id: str) -> Course:
    course = course_services.get_course(db, course_id)
    course_services.require_course_access(db, user=user, course_id=course_id)
    return course


def _rate(value: Optional[int]) -> int:
    return DEFAULT_PASSING_RATE if value is None else value


# ---------------------------------------------------------------------------
# Pre-test (one attempt per user and course)
# ---------------------------------------------------------------------------


def _pre_test_attempts(db: Session, *, user_id: str, course_id: str) -> List[models.PreTestAttempt]:
    return (
        db.query(models.PreTestAttempt)
        .filter(
            models.PreTestAttempt.user_id == user_id,
            models.PreTestAttempt.course_id == course_id,
        )
        .all()
    )


def get_pre_test_view(db: Session, *, user: SessionUser, course_id: str) -> schemas.AssessmentView:
    course = _accessible_course(db, user=user, course_id=course_id)
    questions = _questions_or_404(course.pre_test_content, label="pre-test")
    attempts = _pre_test_attempts(db, user_id=user.id, course_id=course_id)

    return schemas.AssessmentView(
        course_id=course.id,
        course_title=course.title,
        questions=grading.student_view(questions),
        passing_rate=_rate(course.pre_test_passing_rate),
        max_attempts=1,
        attempts=[schemas.AttemptRead.model_validate(a) for a in attempts],
        attempts_remaining=0 if attempts else 1,
    )


def submit_pre_test(
    db: Session,
    *,
    user: SessionUser,
    course_id: str,
    answers: Mapping[int, Optional[int]],
) -> schemas.GradeResponse:
    course = _accessible_course(db, user=user, course_id=course_id)
    questions = _questions_or_404(course.pre_test_content, label="pre-test")

    if _pre_test_attempts(db, user_id=user.id, course_id=course_id):
        raise errors.ConflictError("You have already attempted this pre-test.")

    result = grading.grade_answers(questions, answers)
    passed = result.passed(course.pre_test_passing_rate)

    try:
        with atomic(db, operation="submit_pre_test", user_id=user.id, course_id=course_id):
            db.add(
                models.PreTestAttempt(
                    user_id=user.id,
                    course_id=course_id,
                    score=result.score,
                    total=result.total,
                    passed=passed,
                )
            )
    except IntegrityError:
        # Lost the race against a concurrent submission.
        raise errors.ConflictError("You have already attempted this pre-test.")

    return schemas.GradeResponse(score=result.score, total=result.total, passed=passed)


# ---------------------------------------------------------------------------
# Final assessment (bounded attempts)
# ---------------------------------------------------------------------------


def _final_attempts(db: Session, *, user_id: str, course_id: str) -> List[models.FinalAssessmentAttempt]:
    return (
        db.query(models.FinalAssessmentAttempt)
        .filter(
            models.FinalAssessmentAttempt.user_id == user_id,
            models.FinalAssessmentAttempt.course_id == course_id,
        )
        .order_by(models.FinalAssessmentAttempt.attempt_date.asc())
        .all()
    )


def get_final_assessment_view(
    db: Session,
    *,
    user: SessionUser,
    course_id: str,
) -> schemas.AssessmentView:
    course = _accessible_course(db, user=user, course_id=course_id)
    questions = _questions_or_404(course.final_assessment_content, label="final assessment")
    attempts = _final_attempts(db, user_id=user.id, course_id=course_id)

    return schemas.AssessmentView(
        course_id=course.id,
        course_title=course.title,
        questions=grading.student_view(questions),
        passing_rate=_rate(course.passing_rate),
        max_attempts=course.max_attempts,
        attempts=[schemas.AttemptRead.model_validate(a) for a in attempts],
        attempts_remaining=max(course.max_attempts - len(attempts), 0),
    )


def submit_final_assessment(
    db: Session,
    *,
    user: SessionUser,
    course_id: str,
    answers: Mapping[int, Optional[int]],
) -> schemas.FinalAssessmentResponse:
    """
    Grade and record one final-assessment attempt.

    Once `max_attempts` attempts exist further submissions are refused; when
    the last allowed attempt fails the learner is told to retake the course.
    """
    course = _accessible_course(db, user=user, course_id=course_id)
    questions = _questions_or_404(course.final_assessment_content, label="final assessment")

    with atomic(db, operation="submit_final_assessment", user_id=user.id, course_id=course_id):
        # Serialise concurrent submissions from the same learner on the course row.
        db.query(Course.id).filter(Course.id == course_id).with_for_update().first()
        used = len(_final_attempts(db, user_id=user.id, course_id=course_id))
        if used >= course.max_attempts:
            raise errors.ConflictError("You have used all attempts for this assessment.")

        result = grading.grade_answers(questions, answers)
        passed = result.passed(course.passing_rate)
        db.add(
            models.FinalAssessmentAttempt(
                user_id=user.id,
                course_id=course_id,
                score=result.score,
                total=result.total,
                passed=passed,
            )
        )

    remaining = course.max_attempts - (used + 1)
    return schemas.FinalAssessmentResponse(
        score=result.score,
        total=result.total,
        passed=passed,
        retake_required=not passed and remaining <= 0,
        attempts_remaining=max(remaining, 0),
    )


# ---------------------------------------------------------------------------
# Lesson quiz
# ---------------------------------------------------------------------------


def submit_lesson_quiz(
    db: Session,
    *,
    user: SessionUser,
    site_id: str,
    course_id: str,
    lesson_id: str,
    answers: Mapping[int, Optional[int]],
) -> schemas.QuizResponse:
    """
    Grade a quiz lesson. Every attempt is logged; a perfect score also
    completes the lesson (and possibly the course) in the same transaction.
    """
    _accessible_course(db, user=user, course_id=course_id)
    lesson = course_services.get_lesson_in_course(db, course_id=course_id, lesson_id=lesson_id)
    if lesson.type != LessonType.QUIZ:
        raise errors.ValidationError("This lesson is not a quiz.")
    questions = _questions_or_404(lesson.content, label="quiz")

    result: GradeResult = grading.grade_answers(questions, answers)
    completion = course_services.LessonCompletion()

    with atomic(
        db,
        operation="submit_lesson_quiz",
        site_id=site_id,
        user_id=user.id,
        course_id=course_id,
        lesson_id=lesson_id,
    ):
        db.add(
            models.QuizAttempt(
                user_id=user.id,
                course_id=course_id,
                lesson_id=lesson_id,
                score=result.score,
                total=result.total,
                passed=result.perfect,
            )
        )
        if result.perfect:
            completion = course_services.record_lesson_completion(
                db,
                user_id=user.id,
                site_id=site_id,
                course_id=course_id,
                lesson_id=lesson_id,
            )

    return schemas.QuizResponse(
        score=result.score,
        total=result.total,
        passed=result.perfect,
        correctly_answered_indices=result.correct_indices,
        next_lesson_id=completion.next_lesson_id,
        certificate_id=completion.certificate_id,
    )
