from __future__ import annotations

from contextlib import closing
from datetime import date, datetime

import pytest
from fastapi import HTTPException

from lmsdb import errors
from lmsdb.database import ADMIN_SITE_ID
from lmsdb.apps.accounts.models import UserRole
from lmsdb.apps.certificates import router as certificates_router
from lmsdb.apps.certificates import schemas, services
from lmsdb.apps.certificates.models import Certificate, CertificateSerial, CertificateType
from lmsdb.apps.courses import services as course_services
from lmsdb.apps.sites import services as site_services

ISSUED_AT = datetime(2024, 5, 1, 9, 30)


def _issue(db, *, user_id, course_id, issued_at=ISSUED_AT):
    certificate = services.issue_completion_certificate(
        db,
        site_id=ADMIN_SITE_ID,
        user_id=user_id,
        course_id=course_id,
        issued_at=issued_at,
    )
    db.commit()
    return certificate


def test_number_format():
    assert services.format_certificate_number("QAEHS", date(2024, 5, 1), 7) == "QAEHS-20240501-0007"
    assert services.format_certificate_number("QAEHS", date(2024, 12, 31), 12345) == "QAEHS-20241231-12345"


def test_numbers_are_sequential_per_day(db_session, make_course, make_user):
    learner = make_user(db_session)
    course = make_course(db_session)

    first = _issue(db_session, user_id=learner.id, course_id=course.id)
    second = _issue(db_session, user_id=learner.id, course_id=course.id)
    next_day = _issue(db_session, user_id=learner.id, course_id=course.id, issued_at=datetime(2024, 5, 2, 8, 0))

    assert first.certificate_number == "QAEHS-20240501-0001"
    assert second.certificate_number == "QAEHS-20240501-0002"
    assert next_day.certificate_number == "QAEHS-20240502-0001"


def test_counter_is_seeded_from_numbers_already_issued(db_session, make_course, make_user):
    learner = make_user(db_session)
    course = make_course(db_session)
    for serial in (1, 2, 3):
        db_session.add(
            Certificate(
                site_id=ADMIN_SITE_ID,
                user_id=learner.id,
                course_id=course.id,
                completion_date=ISSUED_AT,
                certificate_number=f"QAEHS-20240501-{serial:04d}",
            )
        )
    db_session.commit()
    assert db_session.query(CertificateSerial).count() == 0

    certificate = _issue(db_session, user_id=learner.id, course_id=course.id)

    assert certificate.certificate_number == "QAEHS-20240501-0004"


def test_collision_burns_serial_and_retries(db_session, make_course, make_user):
    learner = make_user(db_session)
    course = make_course(db_session)
    _issue(db_session, user_id=learner.id, course_id=course.id)

    # Written behind the counter's back.
    db_session.add(
        Certificate(
            site_id=ADMIN_SITE_ID,
            user_id=learner.id,
            course_id=course.id,
            completion_date=ISSUED_AT,
            certificate_number="QAEHS-20240501-0002",
        )
    )
    db_session.commit()

    certificate = _issue(db_session, user_id=learner.id, course_id=course.id)

    assert certificate.certificate_number == "QAEHS-20240501-0003"
    assert db_session.query(Certificate).count() == 3


def test_signatories_are_snapshotted(db_session, make_course, make_user, make_signatory):
    learner = make_user(db_session)
    jane = make_signatory(db_session, name="Jane Cruz")
    mark = make_signatory(db_session, name="Mark Reyes")
    course = make_course(db_session, signatory_ids=[jane.id])

    certificate = _issue(db_session, user_id=learner.id, course_id=course.id)
    course_services.set_course_signatories(db_session, course_id=course.id, signatory_ids=[mark.id])

    db_session.expire_all()
    view = services.build_certificate_view(db_session, db_session.get(Certificate, certificate.id))
    assert [s.name for s in view.signatories] == ["Jane Cruz"]
    assert view.course_title == course.title


def test_latest_completion_certificate(db_session, make_course, make_user):
    learner = make_user(db_session)
    course = make_course(db_session)
    _issue(db_session, user_id=learner.id, course_id=course.id)
    newer = _issue(db_session, user_id=learner.id, course_id=course.id, issued_at=datetime(2024, 6, 1))

    latest = services.latest_completion_certificate(db_session, user_id=learner.id, course_id=course.id)

    assert latest.id == newer.id


# ---------------------------------------------------------------------------
# Recognition certificates
# ---------------------------------------------------------------------------


def test_recognition_certificate(db_session, make_user, make_signatory):
    employee = make_user(db_session, full_name="Ana Santos")
    signatory = make_signatory(db_session)

    certificate = services.issue_recognition_certificate(
        db_session,
        site_id=ADMIN_SITE_ID,
        user_id=employee.id,
        reason="  Ten years of accident-free service  ",
        signatory_ids=[signatory.id, signatory.id],
        issued_on=date(2024, 5, 1),
    )

    assert certificate.type == CertificateType.RECOGNITION
    assert certificate.course_id is None
    assert certificate.reason == "Ten years of accident-free service"
    assert certificate.certificate_number == "QAEHS-20240501-0001"
    assert [link.signatory_id for link in certificate.signatory_links] == [signatory.id]


@pytest.mark.parametrize(
    "reason, signatories, expected",
    [
        ("Too short ", "one", errors.ValidationError),
        ("A perfectly long reason", "none", errors.ValidationError),
        ("A perfectly long reason", "missing", errors.NotFoundError),
    ],
)
def test_recognition_validation(db_session, make_user, make_signatory, reason, signatories, expected):
    employee = make_user(db_session)
    signatory = make_signatory(db_session)
    ids = {"one": [signatory.id], "none": [], "missing": ["SIG-missing"]}[signatories]

    with pytest.raises(expected):
        services.issue_recognition_certificate(
            db_session,
            site_id=ADMIN_SITE_ID,
            user_id=employee.id,
            reason=reason,
            signatory_ids=ids,
        )
    assert db_session.query(Certificate).count() == 0


def test_recognition_for_user_of_another_site_is_rejected(db_session, make_user, make_signatory):
    outsider = make_user(db_session, site_id="cebu-branch", username="outsider")
    signatory = make_signatory(db_session)

    with pytest.raises(errors.NotFoundError):
        services.issue_recognition_certificate(
            db_session,
            site_id=ADMIN_SITE_ID,
            user_id=outsider.id,
            reason="Outstanding safety officer",
            signatory_ids=[signatory.id],
        )


def test_recognition_request_strips_reason():
    with pytest.raises(ValueError):
        schemas.RecognitionRequest(user_id="USR-1", reason="   short    ", signatory_ids=["SIG-1"])


# ---------------------------------------------------------------------------
# Lookup & validation
# ---------------------------------------------------------------------------


def test_validate_certificate_is_scoped_to_site(db_session, make_course, make_user):
    learner = make_user(db_session, full_name="Ana Santos")
    course = make_course(db_session)
    certificate = _issue(db_session, user_id=learner.id, course_id=course.id)

    view = services.validate_certificate(
        db_session, number=f" {certificate.certificate_number} ", site_id=ADMIN_SITE_ID
    )

    assert view.full_name == "Ana Santos"
    assert view.company_name == services.DEFAULT_COMPANY_NAME
    with pytest.raises(errors.NotFoundError):
        services.validate_certificate(
            db_session, number=certificate.certificate_number, site_id="cebu-branch"
        )


def test_certificate_of_another_user_is_hidden(db_session, make_course, make_user):
    owner = make_user(db_session, username="owner")
    nosy = make_user(db_session, username="nosy")
    course = make_course(db_session)
    certificate = _issue(db_session, user_id=owner.id, course_id=course.id)

    with pytest.raises(errors.NotFoundError):
        services.get_certificate_for_user(db_session, certificate_id=certificate.id, user_id=nosy.id)

    view = services.get_certificate_for_user(
        db_session, certificate_id=certificate.id, user_id=nosy.id, allow_any=True
    )
    assert view.id == certificate.id


def test_recognition_route_guards_target_site(registry, make_user, make_signatory, context_for):
    with closing(registry.open(ADMIN_SITE_ID)) as admin_db:
        site_services.create_site(admin_db, name="Cebu Branch", registry=registry)
        root = make_user(admin_db, username="root", role=UserRole.ADMIN)
    with closing(registry.open("cebu-branch")) as branch_db:
        branch_admin = make_user(branch_db, site_id="cebu-branch", username="boss", role=UserRole.ADMIN)
        worker = make_user(branch_db, site_id="cebu-branch", username="worker")
        signatory = make_signatory(branch_db, site_id="cebu-branch")

    payload = schemas.RecognitionRequest(
        user_id=worker.id,
        reason="Led the quarterly fire drill",
        signatory_ids=[signatory.id],
        site_id="cebu-branch",
    )

    with closing(registry.open(ADMIN_SITE_ID)) as admin_db:
        with pytest.raises(HTTPException) as exc:
            certificates_router.issue_recognition(
                payload=payload.model_copy(update={"site_id": ADMIN_SITE_ID}),
                admin_db=admin_db,
                registry=registry,
                ctx=context_for(branch_admin),
            )
        assert exc.value.status_code == 403

        with pytest.raises(HTTPException) as exc:
            certificates_router.issue_recognition(
                payload=payload.model_copy(update={"site_id": "atlantis"}),
                admin_db=admin_db,
                registry=registry,
                ctx=context_for(root, is_super_admin=True),
            )
        assert exc.value.status_code == 400

        issued = certificates_router.issue_recognition(
            payload=payload,
            admin_db=admin_db,
            registry=registry,
            ctx=context_for(root, is_super_admin=True),
        )

    assert issued.site_id == "cebu-branch"
    assert issued.user_id == worker.id
    assert issued.type == CertificateType.RECOGNITION


def test_concurrent_issuance_hands_out_distinct_numbers(locking_registry, make_course, make_user, run_concurrently):
    with closing(locking_registry.open(ADMIN_SITE_ID)) as db:
        learner_id = make_user(db).id
        course_id = make_course(db).id

    def _issue_in_own_session():
        with closing(locking_registry.open(ADMIN_SITE_ID)) as db:
            return _issue(db, user_id=learner_id, course_id=course_id).certificate_number

    numbers = run_concurrently(*[_issue_in_own_session] * 4)

    assert sorted(numbers) == [f"QAEHS-20240501-{serial:04d}" for serial in range(1, 5)]
    with closing(locking_registry.open(ADMIN_SITE_ID)) as db:
        assert db.query(CertificateSerial).one().last_serial == 4
