from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Sequence

from sqlalchemy import func, insert, literal, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import atomic
from lmsdb.apps.accounts import models as account_models
from lmsdb.apps.accounts import services as account_services
from lmsdb.apps.courses import models as course_models
from . import models
from .models import CertificateType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CERTIFICATE_PREFIX = os.getenv("CERTIFICATE_PREFIX", "QAEHS")
MAX_NUMBER_RETRIES = int(os.getenv("CERTIFICATE_NUMBER_MAX_RETRIES", "5"))
MIN_RECOGNITION_REASON_LENGTH = 10
DEFAULT_COMPANY_NAME = "Your Company Name"


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


def format_certificate_number(prefix: str, day: date, serial: int) -> str:
    """`{PREFIX}-{YYYYMMDD}-{NNNN}`, e.g. QAEHS-20240501-0007."""
    return f"{prefix}-{day:%Y%m%d}-{serial:04d}"


def _count_numbers_for_day(db: Session, prefix: str, day: date) -> int:
    pattern = f"{prefix}-{day:%Y%m%d}-%"
    return (
        db.query(func.count(models.Certificate.id))
        .filter(models.Certificate.certificate_number.like(pattern))
        .scalar()
        or 0
    )


def _locked_counter(db: Session, prefix: str, day: date) -> Optional[models.CertificateSerial]:
    return (
        db.query(models.CertificateSerial)
        .filter(
            models.CertificateSerial.prefix == prefix,
            models.CertificateSerial.serial_date == day,
        )
        .with_for_update()
        .first()
    )


def reserve_serial(db: Session, *, day: date, prefix: str = CERTIFICATE_PREFIX) -> int:
    """
    Take the next serial for (prefix, day) inside the caller's transaction.

    The counter row is locked until the caller commits, so concurrent
    issuers on the same day queue behind each other. A missing counter is
    seeded from the numbers already issued that day.
    """
    counter = _locked_counter(db, prefix, day)
    if counter is None:
        seed = _count_numbers_for_day(db, prefix, day)
        try:
            with db.begin_nested():
                counter = models.CertificateSerial(
                    prefix=prefix,
                    serial_date=day,
                    last_serial=seed,
                )
                db.add(counter)
        except IntegrityError:
            # Another issuer created the row between our read and insert.
            counter = _locked_counter(db, prefix, day)
            if counter is None:
                raise

    counter.last_serial = (counter.last_serial or 0) + 1
    db.flush()
    return counter.last_serial


def next_certificate_number(
    db: Session,
    *,
    day: date,
    prefix: str = CERTIFICATE_PREFIX,
) -> str:
    return format_certificate_number(prefix, day, reserve_serial(db, day=day, prefix=prefix))


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


def _insert_with_unique_number(
    db: Session,
    *,
    site_id: str,
    user_id: str,
    course_id: Optional[str],
    cert_type: CertificateType,
    issued_at: datetime,
    reason: Optional[str] = None,
) -> models.Certificate:
    """
    Insert a certificate under a freshly reserved number.

    The unique constraint on `certificate_number` is the final guard; a
    collision (e.g. a number written outside the counter) burns that serial
    and retries with the next one.
    """
    day = issued_at.date()
    for attempt in range(1, MAX_NUMBER_RETRIES + 1):
        number = next_certificate_number(db, day=day)
        certificate = models.Certificate(
            site_id=site_id,
            user_id=user_id,
            course_id=course_id,
            completion_date=issued_at,
            certificate_number=number,
            type=cert_type,
            reason=reason,
        )
        try:
            with db.begin_nested():
                db.add(certificate)
        except IntegrityError:
            logger.warning(
                "Certificate number already taken; retrying",
                extra={"certificate_number": number, "attempt": attempt, "site_id": site_id},
            )
            continue
        return certificate

    raise errors.ConflictError("Could not allocate a unique certificate number.")


def issue_completion_certificate(
    db: Session,
    *,
    site_id: str,
    user_id: str,
    course_id: str,
    issued_at: Optional[datetime] = None,
) -> models.Certificate:
    """
    Issue a completion certificate and snapshot the course's signatories.

    Must run inside the caller's transaction. Signatories are copied with a
    single INSERT ... SELECT, so later changes to the course assignments do
    not touch certificates already issued.
    """
    certificate = _insert_with_unique_number(
        db,
        site_id=site_id,
        user_id=user_id,
        course_id=course_id,
        cert_type=CertificateType.COMPLETION,
        issued_at=issued_at or datetime.utcnow(),
    )

    db.execute(
        insert(models.CertificateSignatory).from_select(
            ["certificate_id", "signatory_id"],
            select(
                literal(certificate.id),
                course_models.CourseSignatory.signatory_id,
            ).where(course_models.CourseSignatory.course_id == course_id),
        )
    )
    db.expire(certificate, ["signatory_links"])

    logger.info(
        "Completion certificate issued",
        extra={
            "site_id": site_id,
            "user_id": user_id,
            "course_id": course_id,
            "certificate_number": certificate.certificate_number,
        },
    )
    return certificate


def issue_recognition_certificate(
    db: Session,
    *,
    site_id: str,
    user_id: str,
    reason: str,
    signatory_ids: Sequence[str],
    issued_on: Optional[date] = None,
) -> models.Certificate:
    """Ad hoc certificate for a user of `site_id`, not tied to any course."""
    reason = (reason or "").strip()
    if len(reason) < MIN_RECOGNITION_REASON_LENGTH:
        raise errors.ValidationError(
            f"Reason must be at least {MIN_RECOGNITION_REASON_LENGTH} characters."
        )
    unique_ids = list(dict.fromkeys(signatory_ids or []))
    if not unique_ids:
        raise errors.ValidationError("At least one signatory is required.")

    recipient = account_services.get_user_by_id(db, user_id)
    if recipient is None or recipient.site_id != site_id:
        raise errors.NotFoundError("User not found.")

    found = {
        row.id
        for row in db.query(course_models.Signatory.id)
        .filter(course_models.Signatory.id.in_(unique_ids))
        .all()
    }
    missing = [sid for sid in unique_ids if sid not in found]
    if missing:
        raise errors.NotFoundError(
            "Signatory not found.",
            extra={"signatory_ids": missing},
        )

    if issued_on is None:
        issued_at = datetime.utcnow()
    else:
        issued_at = datetime.combine(issued_on, datetime.min.time())

    with atomic(db, operation="issue_recognition_certificate", site_id=site_id, user_id=user_id):
        certificate = _insert_with_unique_number(
            db,
            site_id=site_id,
            user_id=user_id,
            course_id=None,
            cert_type=CertificateType.RECOGNITION,
            issued_at=issued_at,
            reason=reason,
        )
        db.add_all(
            models.CertificateSignatory(certificate_id=certificate.id, signatory_id=sid)
            for sid in unique_ids
        )

    logger.info(
        "Recognition certificate issued",
        extra={
            "site_id": site_id,
            "user_id": user_id,
            "certificate_number": certificate.certificate_number,
        },
    )
    return certificate


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@dataclass
class CertificateView:
    id: str
    certificate_number: str
    type: CertificateType
    completion_date: datetime
    site_id: str
    reason: Optional[str] = None
    course_id: Optional[str] = None
    course_title: Optional[str] = None
    course_venue: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    company_name: str = DEFAULT_COMPANY_NAME
    company_address: Optional[str] = None
    company_logo_path: Optional[str] = None
    company_logo_2_path: Optional[str] = None
    signatories: List[course_models.Signatory] = field(default_factory=list)


def latest_completion_certificate(
    db: Session,
    *,
    user_id: str,
    course_id: str,
) -> Optional[models.Certificate]:
    return (
        db.query(models.Certificate)
        .filter(
            models.Certificate.user_id == user_id,
            models.Certificate.course_id == course_id,
            models.Certificate.type == CertificateType.COMPLETION,
        )
        .order_by(models.Certificate.completion_date.desc(), models.Certificate.created_at.desc())
        .first()
    )


def list_user_certificates(db: Session, *, user_id: str) -> List[models.Certificate]:
    return (
        db.query(models.Certificate)
        .filter(models.Certificate.user_id == user_id)
        .order_by(models.Certificate.completion_date.desc())
        .all()
    )


def list_certificates(db: Session, *, site_id: str) -> List[models.Certificate]:
    return (
        db.query(models.Certificate)
        .filter(models.Certificate.site_id == site_id)
        .order_by(models.Certificate.completion_date.desc())
        .all()
    )


def build_certificate_view(db: Session, certificate: models.Certificate) -> CertificateView:
    """Everything needed to render or validate one certificate."""
    course = db.get(course_models.Course, certificate.course_id) if certificate.course_id else None
    holder = db.get(account_models.User, certificate.user_id)
    settings = account_services.get_company_settings(db, site_id=certificate.site_id)

    return CertificateView(
        id=certificate.id,
        certificate_number=certificate.certificate_number,
        type=certificate.type,
        completion_date=certificate.completion_date,
        site_id=certificate.site_id,
        reason=certificate.reason,
        course_id=certificate.course_id,
        course_title=course.title if course else None,
        course_venue=course.venue if course else None,
        username=holder.username if holder else None,
        full_name=holder.full_name if holder else None,
        company_name=settings.company_name or DEFAULT_COMPANY_NAME,
        company_address=settings.company_address or None,
        company_logo_path=settings.company_logo_path or None,
        company_logo_2_path=settings.company_logo_2_path or None,
        signatories=[link.signatory for link in certificate.signatory_links],
    )


def get_certificate_for_user(
    db: Session,
    *,
    certificate_id: str,
    user_id: str,
    allow_any: bool = False,
) -> CertificateView:
    certificate = db.get(models.Certificate, certificate_id)
    if certificate is None or (not allow_any and certificate.user_id != user_id):
        raise errors.NotFoundError("Certificate not found.")
    return build_certificate_view(db, certificate)


def validate_certificate(db: Session, *, number: str, site_id: str) -> CertificateView:
    """Public lookup by number within the store of `site_id`."""
    certificate = (
        db.query(models.Certificate)
        .filter(
            models.Certificate.certificate_number == (number or "").strip(),
            models.Certificate.site_id == site_id,
        )
        .first()
    )
    if certificate is None:
        raise errors.NotFoundError("Certificate not found.")
    return build_certificate_view(db, certificate)
