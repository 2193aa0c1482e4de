from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import EXTERNAL_SITE_ID, atomic
from lmsdb.security import SessionUser
from lmsdb.apps.accounts.models import User
from lmsdb.apps.courses.models import Course, Enrollment
from . import gateway as gateway_client
from . import schemas
from .gateway import GatewayNotConfiguredError, PayMongoGateway
from .models import Transaction, TransactionStatus

logger = logging.getLogger(__name__)

ALREADY_PURCHASED = "You already have an active purchase for this course."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_external_buyer(user: SessionUser, site_id: str) -> None:
    if not user.is_external or site_id != EXTERNAL_SITE_ID:
        raise errors.PermissionDeniedError("This action is for external users only.")


def _paid_course(db: Session, course_id: str) -> Course:
    course = db.get(Course, course_id)
    if course is None or not course.is_public:
        raise errors.NotFoundError("Paid course not found.")
    if course.price is None or course.price <= 0:
        raise errors.ValidationError("This is not a paid course.")
    return course


def _open_transaction(db: Session, *, user_id: str, course_id: str) -> Optional[Transaction]:
    return (
        db.query(Transaction)
        .filter(
            Transaction.user_id == user_id,
            Transaction.course_id == course_id,
            Transaction.status != TransactionStatus.FAILED,
        )
        .first()
    )


def _ensure_enrollment(db: Session, *, user_id: str, course_id: str) -> bool:
    """Create the enrollment unless it exists. Returns True when created."""
    if db.get(Enrollment, (user_id, course_id)) is not None:
        return False
    db.add(Enrollment(user_id=user_id, course_id=course_id))
    db.flush()
    return True


# ---------------------------------------------------------------------------
# Manual purchase (optimistic enrollment)
# ---------------------------------------------------------------------------


def submit_purchase(
    db: Session,
    *,
    user: SessionUser,
    site_id: str,
    course_id: str,
    data: schemas.ManualPurchaseRequest,
) -> Transaction:
    """
    Record a manual payment for review and enroll the buyer straight away.

    Access is revoked again if an admin rejects the payment.
    """
    _require_external_buyer(user, site_id)
    course = _paid_course(db, course_id)

    if _open_transaction(db, user_id=user.id, course_id=course_id) is not None:
        raise errors.ConflictError(ALREADY_PURCHASED)

    transaction = Transaction(
        user_id=user.id,
        course_id=course_id,
        amount=course.price,
        status=TransactionStatus.PENDING,
        gateway="manual",
        proof_image_path=data.proof_image_path,
        reference_number=data.reference_number,
    )
    try:
        with atomic(db, operation="submit_purchase", user_id=user.id, course_id=course_id):
            db.add(transaction)
            _ensure_enrollment(db, user_id=user.id, course_id=course_id)
    except IntegrityError:
        raise errors.ConflictError(ALREADY_PURCHASED)

    logger.info(
        "Manual purchase submitted",
        extra={"user_id": user.id, "course_id": course_id, "transaction_id": transaction.id},
    )
    return transaction


# ---------------------------------------------------------------------------
# Admin review
# ---------------------------------------------------------------------------


def update_transaction_status(
    db: Session,
    *,
    transaction_id: int,
    status: TransactionStatus,
    rejection_reason: Optional[str] = None,
) -> Transaction:
    """
    Settle a pending transaction as completed or rejected.

    The row is locked first so two reviewers cannot settle it twice.
    Rejection revokes the enrollment created at purchase time.
    """
    if status not in (TransactionStatus.COMPLETED, TransactionStatus.REJECTED):
        raise errors.ValidationError("Status must be 'completed' or 'rejected'.")
    reason = (rejection_reason or "").strip()
    if status == TransactionStatus.REJECTED and not reason:
        raise errors.ValidationError("Rejection reason is required.")

    with atomic(db, operation="update_transaction_status", transaction_id=transaction_id):
        transaction = (
            db.query(Transaction)
            .filter(Transaction.id == transaction_id)
            .with_for_update()
            .first()
        )
        if transaction is None:
            raise errors.NotFoundError("Transaction not found.")
        if transaction.status != TransactionStatus.PENDING:
            raise errors.ConflictError("This transaction has already been processed.")

        transaction.status = status
        if status == TransactionStatus.REJECTED:
            transaction.rejection_reason = reason
            removed = 0
            if transaction.course_id is not None:
                removed = (
                    db.query(Enrollment)
                    .filter(
                        Enrollment.user_id == transaction.user_id,
                        Enrollment.course_id == transaction.course_id,
                    )
                    .delete(synchronize_session=False)
                )
            if not removed:
                logger.warning(
                    "No enrollment to revoke for rejected transaction",
                    extra={
                        "transaction_id": transaction_id,
                        "user_id": transaction.user_id,
                        "course_id": transaction.course_id,
                    },
                )

    logger.info(
        "Transaction status changed",
        extra={"transaction_id": transaction_id, "status": status.value},
    )
    return transaction


def list_transactions(db: Session) -> List[schemas.TransactionRead]:
    """Pending first, then rejected, completed and the rest; newest first within each."""
    status_rank = case(
        (Transaction.status == TransactionStatus.PENDING, 1),
        (Transaction.status == TransactionStatus.REJECTED, 2),
        (Transaction.status == TransactionStatus.COMPLETED, 3),
        else_=4,
    )
    rows = (
        db.query(Transaction, User.username, Course.title)
        .outerjoin(User, User.id == Transaction.user_id)
        .outerjoin(Course, Course.id == Transaction.course_id)
        .order_by(status_rank.asc(), Transaction.transaction_date.desc(), Transaction.id.desc())
        .all()
    )
    return [
        schemas.TransactionRead(
            id=transaction.id,
            user_id=transaction.user_id,
            username=username,
            course_id=transaction.course_id,
            course_title=title,
            amount=transaction.amount,
            status=transaction.status,
            gateway=transaction.gateway,
            gateway_transaction_id=transaction.gateway_transaction_id,
            proof_image_path=transaction.proof_image_path,
            reference_number=transaction.reference_number,
            rejection_reason=transaction.rejection_reason,
            transaction_date=transaction.transaction_date,
        )
        for transaction, username, title in rows
    ]


def list_user_payments(db: Session, *, user_id: str) -> List[schemas.PaymentHistoryRead]:
    rows = (
        db.query(Transaction, Course.title)
        .outerjoin(Course, Course.id == Transaction.course_id)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .all()
    )
    return [
        schemas.PaymentHistoryRead(
            id=transaction.id,
            course_id=transaction.course_id,
            course_title=title,
            amount=transaction.amount,
            status=transaction.status,
            rejection_reason=transaction.rejection_reason,
            transaction_date=transaction.transaction_date,
        )
        for transaction, title in rows
    ]


# ---------------------------------------------------------------------------
# Gateway checkout
# ---------------------------------------------------------------------------


def create_checkout(
    db: Session,
    *,
    user: SessionUser,
    site_id: str,
    course_id: str,
    gateway: Optional[PayMongoGateway],
) -> schemas.CheckoutResponse:
    """
    Open a hosted checkout session and record it as a pending transaction.

    An earlier, still-pending gateway checkout for the same course is
    superseded (marked failed); any other active purchase is a conflict.
    """
    if gateway is None:
        raise GatewayNotConfiguredError()
    _require_external_buyer(user, site_id)
    course = _paid_course(db, course_id)

    if db.get(Enrollment, (user.id, course_id)) is not None:
        raise errors.ConflictError("You are already enrolled in this course.")
    existing = _open_transaction(db, user_id=user.id, course_id=course_id)
    if existing is not None and not (
        existing.status == TransactionStatus.PENDING and existing.gateway != "manual"
    ):
        raise errors.ConflictError(ALREADY_PURCHASED)

    session = gateway.create_checkout_session(
        amount=course.price,
        name=course.title,
        course_id=course.id,
        metadata={"userId": user.id, "courseId": course.id, "siteId": site_id},
    )
    checkout_session_id = gateway_client.session_id(session)
    url = gateway_client.checkout_url(session)

    transaction = Transaction(
        user_id=user.id,
        course_id=course_id,
        amount=course.price,
        status=TransactionStatus.PENDING,
        gateway="paymongo",
        gateway_transaction_id=checkout_session_id,
    )
    try:
        with atomic(db, operation="create_checkout", user_id=user.id, course_id=course_id):
            if existing is not None:
                existing.status = TransactionStatus.FAILED
                db.flush()
            db.add(transaction)
    except IntegrityError:
        raise errors.ConflictError(ALREADY_PURCHASED)

    return schemas.CheckoutResponse(transaction_id=transaction.id, checkout_url=url)


def confirm_gateway_payment(
    db: Session,
    *,
    checkout_session_id: str,
    gateway: Optional[PayMongoGateway],
) -> schemas.VerifyPaymentResponse:
    """
    Reconcile a checkout session with the gateway.

    No `paid` payment: the pending transaction is marked failed and the
    caller gets 402. Paid: the transaction is completed and the buyer
    enrolled; repeating the call is harmless.
    """
    if gateway is None:
        raise GatewayNotConfiguredError()

    session = gateway.get_checkout_session(checkout_session_id)

    if not gateway_client.has_paid_payment(session):
        with atomic(db, operation="fail_gateway_payment", checkout_session_id=checkout_session_id):
            db.query(Transaction).filter(
                Transaction.gateway_transaction_id == checkout_session_id,
                Transaction.status == TransactionStatus.PENDING,
            ).update({Transaction.status: TransactionStatus.FAILED}, synchronize_session=False)
        raise errors.PaymentRequiredError()

    metadata = gateway_client.session_metadata(session)
    user_id = metadata.get("userId")
    course_id = metadata.get("courseId")
    if not user_id or not course_id or metadata.get("siteId") != EXTERNAL_SITE_ID:
        raise errors.ValidationError("Payment session metadata is invalid or missing.")

    with atomic(
        db,
        operation="confirm_gateway_payment",
        checkout_session_id=checkout_session_id,
        user_id=user_id,
        course_id=course_id,
    ):
        transaction = (
            db.query(Transaction)
            .filter(Transaction.gateway_transaction_id == checkout_session_id)
            .with_for_update()
            .first()
        )
        if transaction is None:
            raise errors.NotFoundError("Transaction not found.")
        if transaction.status in (TransactionStatus.REJECTED, TransactionStatus.FAILED):
            raise errors.ConflictError("This transaction has already been processed.")
        transaction.status = TransactionStatus.COMPLETED
        enrolled = _ensure_enrollment(db, user_id=str(user_id), course_id=str(course_id))

    logger.info(
        "Gateway payment confirmed",
        extra={
            "transaction_id": transaction.id,
            "user_id": user_id,
            "course_id": course_id,
        },
    )
    if not enrolled:
        return schemas.VerifyPaymentResponse(message="Already enrolled.")
    return schemas.VerifyPaymentResponse(message="User enrolled successfully.")
