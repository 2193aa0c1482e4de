from __future__ import annotations

import pytest

from lmsdb import errors
from lmsdb.security import SessionUser
from lmsdb.apps.assessments import services
from lmsdb.apps.assessments.models import QuizAttempt
from lmsdb.apps.certificates.models import Certificate
from lmsdb.apps.courses import schemas as course_schemas
from lmsdb.apps.courses import services as course_services

QUESTIONS = [
    {"text": "Which extinguisher is safe on electrical fires?", "options": [{"text": "Water"}, {"text": "CO2"}], "correct_option_index": 1},
    {"text": "First step of PASS?", "options": [{"text": "Pull"}, {"text": "Push"}], "correct_option_index": 0},
]
ALL_RIGHT = {0: 1, 1: 0}
ALL_WRONG = {0: 0, 1: 1}


@pytest.fixture()
def learner(db_session, make_user):
    return make_user(db_session, username="learner")


@pytest.fixture()
def enrolled(db_session, learner):
    def _enroll(course):
        course_services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
        return SessionUser.from_model(learner)

    return _enroll


# ---------------------------------------------------------------------------
# Pre-test
# ---------------------------------------------------------------------------


def test_pre_test_allows_a_single_attempt(db_session, make_course, enrolled):
    course = make_course(db_session, pre_test=QUESTIONS)
    user = enrolled(course)

    result = services.submit_pre_test(db_session, user=user, course_id=course.id, answers={0: 1})
    assert (result.score, result.total, result.passed) == (1, 2, False)

    with pytest.raises(errors.ConflictError) as exc:
        services.submit_pre_test(db_session, user=user, course_id=course.id, answers=ALL_RIGHT)
    assert exc.value.detail == "You have already attempted this pre-test."

    view = services.get_pre_test_view(db_session, user=user, course_id=course.id)
    assert view.attempts_remaining == 0
    assert len(view.attempts) == 1


def test_course_without_pre_test(db_session, make_course, enrolled):
    course = make_course(db_session)
    user = enrolled(course)

    with pytest.raises(errors.NotFoundError):
        services.get_pre_test_view(db_session, user=user, course_id=course.id)


def test_pre_test_requires_access(db_session, make_course, learner):
    course = make_course(db_session, pre_test=QUESTIONS)

    with pytest.raises(errors.PermissionDeniedError):
        services.submit_pre_test(
            db_session, user=SessionUser.from_model(learner), course_id=course.id, answers=ALL_RIGHT
        )


# ---------------------------------------------------------------------------
# Final assessment
# ---------------------------------------------------------------------------


def test_final_assessment_pass(db_session, make_course, enrolled):
    course = make_course(db_session, final_assessment=QUESTIONS, max_attempts=2)
    user = enrolled(course)

    result = services.submit_final_assessment(db_session, user=user, course_id=course.id, answers=ALL_RIGHT)

    assert result.passed
    assert not result.retake_required
    assert result.attempts_remaining == 1
    assert result.model_dump(by_alias=True)["attemptsRemaining"] == 1


def test_final_assessment_attempts_run_out(db_session, make_course, enrolled):
    course = make_course(db_session, final_assessment=QUESTIONS, max_attempts=2)
    user = enrolled(course)

    first = services.submit_final_assessment(db_session, user=user, course_id=course.id, answers=ALL_WRONG)
    assert not first.passed
    assert not first.retake_required
    assert first.attempts_remaining == 1

    last = services.submit_final_assessment(db_session, user=user, course_id=course.id, answers=ALL_WRONG)
    assert last.retake_required
    assert last.attempts_remaining == 0

    with pytest.raises(errors.ConflictError):
        services.submit_final_assessment(db_session, user=user, course_id=course.id, answers=ALL_RIGHT)

    view = services.get_final_assessment_view(db_session, user=user, course_id=course.id)
    assert view.attempts_remaining == 0
    assert view.passing_rate == 80


def test_retake_restores_final_attempts(db_session, make_course, enrolled):
    course = make_course(db_session, final_assessment=QUESTIONS, max_attempts=1)
    user = enrolled(course)
    services.submit_final_assessment(db_session, user=user, course_id=course.id, answers=ALL_WRONG)

    course_services.retake_course(db_session, user=user, site_id="main", course_id=course.id)

    again = services.submit_final_assessment(db_session, user=user, course_id=course.id, answers=ALL_RIGHT)
    assert again.passed


# ---------------------------------------------------------------------------
# Lesson quiz
# ---------------------------------------------------------------------------


def _quiz_course(make_course, db):
    quiz = course_schemas.LessonIn(title="Knowledge check", type="quiz", questions=QUESTIONS)
    course = make_course(db, lessons=("Introduction", quiz))
    intro_id, quiz_id = course_services.ordered_lesson_ids(db, course.id)
    return course, intro_id, quiz_id


def test_perfect_quiz_completes_lesson_and_course(db_session, make_course, enrolled):
    course, intro_id, quiz_id = _quiz_course(make_course, db_session)
    user = enrolled(course)
    course_services.complete_lesson(
        db_session, user=user, site_id="main", course_id=course.id, lesson_id=intro_id
    )

    result = services.submit_lesson_quiz(
        db_session, user=user, site_id="main", course_id=course.id, lesson_id=quiz_id, answers=ALL_RIGHT
    )

    assert result.passed
    assert result.correctly_answered_indices == [0, 1]
    assert result.certificate_id is not None
    assert db_session.query(Certificate).filter(Certificate.user_id == user.id).count() == 1


def test_imperfect_quiz_is_logged_without_completing(db_session, make_course, enrolled):
    course, _, quiz_id = _quiz_course(make_course, db_session)
    user = enrolled(course)

    result = services.submit_lesson_quiz(
        db_session, user=user, site_id="main", course_id=course.id, lesson_id=quiz_id, answers={0: 1}
    )

    assert not result.passed
    assert result.correctly_answered_indices == [0]
    assert result.next_lesson_id is None and result.certificate_id is None
    assert course_services.completed_lesson_ids(db_session, user_id=user.id, course_id=course.id) == set()
    [attempt] = db_session.query(QuizAttempt).all()
    assert (attempt.score, attempt.total, attempt.passed) == (1, 2, False)


def test_perfect_quiz_on_first_lesson_points_to_next(db_session, make_course, enrolled):
    quiz = course_schemas.LessonIn(title="Warm-up", type="quiz", questions=QUESTIONS)
    course = make_course(db_session, lessons=(quiz, "Main lesson"))
    quiz_id, main_id = course_services.ordered_lesson_ids(db_session, course.id)
    user = enrolled(course)

    result = services.submit_lesson_quiz(
        db_session, user=user, site_id="main", course_id=course.id, lesson_id=quiz_id, answers=ALL_RIGHT
    )

    assert result.next_lesson_id == main_id
    assert result.model_dump(by_alias=True)["nextLessonId"] == main_id


def test_quiz_endpoint_rejects_non_quiz_lessons(db_session, make_course, enrolled):
    course, intro_id, _ = _quiz_course(make_course, db_session)
    user = enrolled(course)

    with pytest.raises(errors.ValidationError):
        services.submit_lesson_quiz(
            db_session, user=user, site_id="main", course_id=course.id, lesson_id=intro_id, answers={}
        )
    assert db_session.query(QuizAttempt).count() == 0
