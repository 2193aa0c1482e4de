from __future__ import annotations

from contextlib import closing
from datetime import datetime
from decimal import Decimal

import pytest

from lmsdb import errors
from lmsdb.database import ADMIN_SITE_ID
from lmsdb.security import SessionUser
from lmsdb.apps.accounts.models import UserRole, UserType
from lmsdb.apps.assessments.models import FinalAssessmentAttempt
from lmsdb.apps.certificates.models import Certificate, CertificateType
from lmsdb.apps.courses import schemas, services
from lmsdb.apps.courses.models import CourseSignatory, UserProgress
from lmsdb.apps.payments.models import Transaction, TransactionStatus

FINAL_QUESTIONS = [
    {"text": "Which class of fire involves electrical equipment?", "options": [{"text": "A"}, {"text": "C"}], "correct_option_index": 1},
    {"text": "PASS stands for Pull, Aim, Squeeze and...?", "options": [{"text": "Sweep"}, {"text": "Stop"}], "correct_option_index": 0},
]


@pytest.fixture()
def learner(db_session, make_user):
    return make_user(db_session, username="learner")


def _complete(db, user, course, lesson_id, site_id="main"):
    return services.complete_lesson(
        db,
        user=SessionUser.from_model(user),
        site_id=site_id,
        course_id=course.id,
        lesson_id=lesson_id,
    )


def _certificates(db, user_id):
    return db.query(Certificate).filter(Certificate.user_id == user_id).all()


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


def test_completion_walks_lessons_then_issues_certificate(db_session, make_course, learner):
    course = make_course(db_session, lessons=("Introduction", "Extinguishers", "Evacuation"))
    first, second, third = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])

    result = _complete(db_session, learner, course, first)
    assert result == services.LessonCompletion(next_lesson_id=second)

    # Finishing the last lesson out of order has nowhere to go next.
    result = _complete(db_session, learner, course, third)
    assert result == services.LessonCompletion()

    result = _complete(db_session, learner, course, second)
    assert result.next_lesson_id is None
    assert result.certificate_id is not None

    [certificate] = _certificates(db_session, learner.id)
    assert certificate.id == result.certificate_id
    assert certificate.course_id == course.id
    assert certificate.type == CertificateType.COMPLETION
    assert certificate.site_id == "main"


def test_recompleting_a_lesson_never_issues_another_certificate(db_session, make_course, learner):
    course = make_course(db_session)
    first, second = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])

    _complete(db_session, learner, course, first)
    issued = _complete(db_session, learner, course, second)

    again = _complete(db_session, learner, course, second)
    also = _complete(db_session, learner, course, first)

    assert again.certificate_id == issued.certificate_id
    assert also.certificate_id == issued.certificate_id
    assert len(_certificates(db_session, learner.id)) == 1


def test_course_without_lessons_completes_nothing(db_session, make_course, learner):
    course = make_course(db_session, lessons=())
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])

    result = _complete(db_session, learner, course, "LSN-does-not-matter")

    assert result == services.LessonCompletion()
    assert _certificates(db_session, learner.id) == []


def test_lesson_of_another_course_is_not_found(db_session, make_course, learner):
    course = make_course(db_session, title="Fire Safety")
    other = make_course(db_session, title="First Aid")
    foreign_lesson = services.ordered_lesson_ids(db_session, other.id)[0]
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])

    with pytest.raises(errors.NotFoundError):
        _complete(db_session, learner, course, foreign_lesson)
    assert db_session.query(UserProgress).count() == 0


def test_unenrolled_employee_is_denied(db_session, make_course, learner):
    course = make_course(db_session)
    lesson = services.ordered_lesson_ids(db_session, course.id)[0]

    with pytest.raises(errors.PermissionDeniedError) as exc:
        _complete(db_session, learner, course, lesson)
    assert exc.value.detail == "You are not enrolled in this course."


def test_admin_needs_no_enrollment(db_session, make_course, make_user):
    admin = make_user(db_session, username="trainer", role=UserRole.ADMIN)
    course = make_course(db_session)
    lesson = services.ordered_lesson_ids(db_session, course.id)[0]

    result = _complete(db_session, admin, course, lesson)

    assert result.next_lesson_id is not None


def test_external_buyer_with_pending_purchase_has_access(db_session, make_course, make_user):
    buyer = make_user(db_session, site_id="external", username="buyer", type=UserType.EXTERNAL)
    course = make_course(db_session, site_id="external", is_internal=False, is_public=True, price=1500)
    session_user = SessionUser.from_model(buyer)

    assert not services.has_course_access(db_session, user=session_user, course_id=course.id)

    db_session.add(
        Transaction(user_id=buyer.id, course_id=course.id, amount=Decimal("1500.00"))
    )
    db_session.commit()
    assert services.has_course_access(db_session, user=session_user, course_id=course.id)


def test_failed_purchase_grants_no_access(db_session, make_course, make_user):
    buyer = make_user(db_session, site_id="external", username="buyer", type=UserType.EXTERNAL)
    course = make_course(db_session, site_id="external", is_internal=False, is_public=True, price=1500)
    db_session.add(
        Transaction(
            user_id=buyer.id,
            course_id=course.id,
            amount=Decimal("1500.00"),
            status=TransactionStatus.FAILED,
        )
    )
    db_session.commit()

    assert not services.has_course_access(
        db_session, user=SessionUser.from_model(buyer), course_id=course.id
    )


def test_concurrent_completion_of_last_lessons_issues_one_certificate(
    locking_registry, make_course, make_user, run_concurrently
):
    with closing(locking_registry.open(ADMIN_SITE_ID)) as db:
        user = SessionUser.from_model(make_user(db))
        course_id = make_course(db, lessons=("One", "Two", "Three")).id
        first, *last_two = services.ordered_lesson_ids(db, course_id)
        services.enroll_users(db, course_id=course_id, user_ids=[user.id])
        services.complete_lesson(db, user=user, site_id=ADMIN_SITE_ID, course_id=course_id, lesson_id=first)

    def _complete_in_own_session(lesson_id):
        def _call():
            with closing(locking_registry.open(ADMIN_SITE_ID)) as db:
                return services.complete_lesson(
                    db, user=user, site_id=ADMIN_SITE_ID, course_id=course_id, lesson_id=lesson_id
                )

        return _call

    results = run_concurrently(*(_complete_in_own_session(lesson_id) for lesson_id in last_two))

    issued = [result.certificate_id for result in results if result.certificate_id]
    assert len(issued) == 1
    with closing(locking_registry.open(ADMIN_SITE_ID)) as db:
        assert db.query(Certificate).filter(Certificate.user_id == user.id).count() == 1


# ---------------------------------------------------------------------------
# Retake & retraining
# ---------------------------------------------------------------------------


def test_retake_clears_progress_but_keeps_certificates(db_session, make_course, learner):
    course = make_course(db_session, final_assessment=FINAL_QUESTIONS)
    first, second = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
    _complete(db_session, learner, course, first)
    original = _complete(db_session, learner, course, second)
    db_session.add(
        FinalAssessmentAttempt(user_id=learner.id, course_id=course.id, score=0, total=2, passed=False)
    )
    db_session.commit()

    services.retake_course(
        db_session, user=SessionUser.from_model(learner), site_id="main", course_id=course.id
    )

    assert services.completed_lesson_ids(db_session, user_id=learner.id, course_id=course.id) == set()
    assert db_session.query(FinalAssessmentAttempt).count() == 0
    assert [c.id for c in _certificates(db_session, learner.id)] == [original.certificate_id]

    # Completing again earns a second certificate with its own number.
    _complete(db_session, learner, course, first)
    renewed = _complete(db_session, learner, course, second)
    numbers = {c.certificate_number for c in _certificates(db_session, learner.id)}
    assert renewed.certificate_id != original.certificate_id
    assert len(numbers) == 2


def test_retrain_resets_certificate_holders_only(db_session, make_course, make_user):
    finished = make_user(db_session, username="finished")
    halfway = make_user(db_session, username="halfway")
    course = make_course(db_session)
    first, second = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[finished.id, halfway.id])
    _complete(db_session, finished, course, first)
    _complete(db_session, finished, course, second)
    _complete(db_session, halfway, course, first)

    reset = services.retrain_cohort(db_session, site_id="main", course_id=course.id)

    assert reset == 1
    assert services.completed_lesson_ids(db_session, user_id=finished.id, course_id=course.id) == set()
    assert services.completed_lesson_ids(db_session, user_id=halfway.id, course_id=course.id) == {first}
    assert len(_certificates(db_session, finished.id)) == 1


def test_retrain_without_holders_is_a_noop(db_session, make_course):
    course = make_course(db_session)
    assert services.retrain_cohort(db_session, site_id="main", course_id=course.id) == 0


# ---------------------------------------------------------------------------
# Learner views
# ---------------------------------------------------------------------------


def test_catalog_depends_on_learner_type(db_session, make_course, make_user):
    make_course(db_session, title="Internal Only")
    make_course(db_session, title="Open Course", is_internal=True, is_public=True, price=999)
    make_course(db_session, title="Public Only", is_internal=False, is_public=True, price=1500)
    employee = SessionUser.from_model(make_user(db_session, username="emp"))
    buyer = SessionUser.from_model(
        make_user(db_session, username="buyer", type=UserType.EXTERNAL)
    )

    staff_view = services.list_available_courses(db_session, user=employee)
    buyer_view = services.list_available_courses(db_session, user=buyer)

    assert [c.title for c in staff_view] == ["Internal Only", "Open Course", "Public Only"]
    assert all(c.price is None for c in staff_view)
    assert [c.title for c in buyer_view] == ["Open Course", "Public Only"]
    assert [c.price for c in buyer_view] == [Decimal("999.00"), Decimal("1500.00")]


def test_course_detail_reports_progress(db_session, make_course, learner):
    course = make_course(db_session, final_assessment=FINAL_QUESTIONS)
    first, _ = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
    _complete(db_session, learner, course, first)

    detail = services.get_course_detail(
        db_session, user=SessionUser.from_model(learner), course_id=course.id
    )

    assert detail.progress == 50
    assert detail.is_enrolled
    assert detail.has_final_assessment and not detail.has_pre_test
    assert [lesson.completed for lesson in detail.modules[0].lessons] == [True, False]


def test_quiz_lesson_detail_hides_answer_key(db_session, make_course, learner):
    quiz = schemas.LessonIn(
        title="Check yourself",
        type="quiz",
        questions=[FINAL_QUESTIONS[0]],
    )
    course = make_course(db_session, lessons=("Introduction", quiz))
    _, quiz_id = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])

    detail = services.get_lesson_detail(
        db_session, user=SessionUser.from_model(learner), course_id=course.id, lesson_id=quiz_id
    )

    assert detail.content is None
    assert detail.previous_lesson_id is not None and detail.next_lesson_id is None
    dumped = detail.model_dump(by_alias=True)
    assert "isCorrect" not in str(dumped)
    assert [o["text"] for o in dumped["questions"][0]["options"]] == ["A", "C"]


# ---------------------------------------------------------------------------
# Course administration
# ---------------------------------------------------------------------------


def _outline_payload(course, modules):
    return schemas.CourseIn(
        title=course.title,
        is_internal=course.is_internal,
        is_public=course.is_public,
        price=course.price,
        modules=modules,
    )


def test_outline_update_keeps_lesson_ids_and_progress(db_session, make_course, learner):
    course = make_course(db_session, lessons=("Introduction", "Extinguishers", "Drills"))
    first, second, third = services.ordered_lesson_ids(db_session, course.id)
    module_id = course.modules[0].id
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
    _complete(db_session, learner, course, first)

    services.update_course(
        db_session,
        course_id=course.id,
        data=_outline_payload(
            course,
            [
                schemas.ModuleIn(
                    id=module_id,
                    title="Basics",
                    lessons=[
                        schemas.LessonIn(id=second, title="Extinguishers"),
                        schemas.LessonIn(id=first, title="Introduction (revised)"),
                        schemas.LessonIn(title="Hazard Mapping"),
                    ],
                )
            ],
        ),
    )

    ordered = services.ordered_lesson_ids(db_session, course.id)
    assert ordered[:2] == [second, first]
    assert len(ordered) == 3 and third not in ordered
    assert services.completed_lesson_ids(db_session, user_id=learner.id, course_id=course.id) == {first}
    assert course.modules[0].title == "Basics"


def test_delete_course_keeps_certificates(db_session, make_course, learner):
    course = make_course(db_session, lessons=("Only lesson",))
    [lesson] = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
    issued = _complete(db_session, learner, course, lesson)

    services.delete_course(db_session, course_id=course.id)

    certificate = db_session.get(Certificate, issued.certificate_id)
    db_session.refresh(certificate)
    assert certificate.course_id is None
    assert db_session.query(UserProgress).count() == 0
    with pytest.raises(errors.NotFoundError):
        services.get_course(db_session, course.id)


def test_enroll_users_skips_existing_and_rejects_unknown(db_session, make_course, learner):
    course = make_course(db_session)

    assert services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id]) == 1
    assert services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id]) == 0
    with pytest.raises(errors.NotFoundError):
        services.enroll_users(db_session, course_id=course.id, user_ids=["USR-nobody"])

    [row] = services.list_enrollments(db_session, course_id=course.id)
    assert row.username == "learner"

    services.unenroll_user(db_session, course_id=course.id, user_id=learner.id)
    assert services.list_enrollments(db_session, course_id=course.id) == []


def test_progress_report_reserves_full_marks_for_passing_final(db_session, make_course, learner):
    course = make_course(db_session, final_assessment=FINAL_QUESTIONS)
    first, second = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
    _complete(db_session, learner, course, first)
    _complete(db_session, learner, course, second)

    [row] = services.course_progress_report(db_session, course_id=course.id)
    assert (row.completed_lessons, row.total_lessons, row.progress) == (2, 2, 99)

    db_session.add(
        FinalAssessmentAttempt(
            user_id=learner.id,
            course_id=course.id,
            score=2,
            total=2,
            passed=True,
            attempt_date=datetime.utcnow(),
        )
    )
    db_session.commit()

    [row] = services.course_progress_report(db_session, course_id=course.id)
    assert row.progress == 100


def test_progress_report_without_final_assessment(db_session, make_course, learner):
    course = make_course(db_session)
    first, second = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
    _complete(db_session, learner, course, first)
    _complete(db_session, learner, course, second)

    [row] = services.course_progress_report(db_session, course_id=course.id)
    assert row.progress == 100


# ---------------------------------------------------------------------------
# Signatories
# ---------------------------------------------------------------------------


def test_signatory_on_issued_certificate_cannot_be_deleted(
    db_session, make_course, make_signatory, learner
):
    signatory = make_signatory(db_session)
    course = make_course(db_session, lessons=("Only lesson",), signatory_ids=[signatory.id])
    [lesson] = services.ordered_lesson_ids(db_session, course.id)
    services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
    _complete(db_session, learner, course, lesson)

    with pytest.raises(errors.ConflictError):
        services.delete_signatory(db_session, site_id="main", signatory_id=signatory.id)


def test_unused_signatory_is_removed_from_courses(db_session, make_course, make_signatory):
    signatory = make_signatory(db_session)
    course = make_course(db_session, signatory_ids=[signatory.id])
    assert course.signatory_ids == [signatory.id]

    services.delete_signatory(db_session, site_id="main", signatory_id=signatory.id)

    assert db_session.query(CourseSignatory).count() == 0
    assert services.list_signatories(db_session, site_id="main") == []


def test_unknown_signatory_on_course_is_rejected(db_session, make_course):
    with pytest.raises(errors.NotFoundError):
        make_course(db_session, signatory_ids=["SIG-missing"])
