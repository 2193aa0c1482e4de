# backend/lmsdb/apps/payments/router.py

from __future__ import annotations

import logging
from contextlib import closing
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import EXTERNAL_SITE_ID, TenantStoreRegistry, get_registry
from lmsdb.security import SessionContext, get_tenant_db, require_session, require_super_admin
from . import schemas, services
from .gateway import PayMongoGateway, get_payment_gateway
from .models import TransactionStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


# ---------------------------------------------------------------------------
# LEARNER
# ---------------------------------------------------------------------------


@router.post(
    "/courses/{course_id}/purchase",
    response_model=schemas.TransactionRead,
    status_code=status.HTTP_201_CREATED,
)
def submit_purchase(
    course_id: str,
    payload: schemas.ManualPurchaseRequest,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.submit_purchase(
            db,
            user=ctx.user,
            site_id=ctx.site_id,
            course_id=course_id,
            data=payload,
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to submit purchase", extra={"course_id": course_id})
        raise errors.server_error("Failed to submit purchase")


@router.post("/courses/{course_id}/checkout", response_model=schemas.CheckoutResponse)
def create_checkout(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
    gateway: Optional[PayMongoGateway] = Depends(get_payment_gateway),
):
    try:
        return services.create_checkout(
            db,
            user=ctx.user,
            site_id=ctx.site_id,
            course_id=course_id,
            gateway=gateway,
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to create payment link", extra={"course_id": course_id})
        raise errors.server_error("Failed to create payment link")


@router.post("/payments/verify", response_model=schemas.VerifyPaymentResponse)
def verify_payment(
    payload: schemas.VerifyPaymentRequest,
    registry: TenantStoreRegistry = Depends(get_registry),
    ctx: SessionContext = Depends(require_session),
    gateway: Optional[PayMongoGateway] = Depends(get_payment_gateway),
):
    """Called from the checkout success page once the buyer is redirected back."""
    try:
        with closing(registry.open(EXTERNAL_SITE_ID)) as db:
            return services.confirm_gateway_payment(
                db,
                checkout_session_id=payload.checkout_session_id,
                gateway=gateway,
            )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception(
            "Failed to verify payment",
            extra={"checkout_session_id": payload.checkout_session_id},
        )
        raise errors.server_error("Failed to verify payment")


@router.get("/profile/payments", response_model=List[schemas.PaymentHistoryRead])
def payment_history(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    if ctx.site_id != EXTERNAL_SITE_ID:
        return []
    return services.list_user_payments(db, user_id=ctx.user.id)


# ---------------------------------------------------------------------------
# ADMIN (super admin; transactions live in the external site)
# ---------------------------------------------------------------------------


@router.get("/admin/payments", response_model=List[schemas.TransactionRead])
def list_transactions(
    registry: TenantStoreRegistry = Depends(get_registry),
    ctx: SessionContext = Depends(require_super_admin),
):
    with closing(registry.open(EXTERNAL_SITE_ID)) as db:
        return services.list_transactions(db)


@router.post("/admin/payments/update-status", response_model=schemas.TransactionRead)
def update_transaction_status(
    payload: schemas.TransactionStatusUpdate,
    registry: TenantStoreRegistry = Depends(get_registry),
    ctx: SessionContext = Depends(require_super_admin),
):
    try:
        with closing(registry.open(EXTERNAL_SITE_ID)) as db:
            transaction = services.update_transaction_status(
                db,
                transaction_id=payload.transaction_id,
                status=TransactionStatus(payload.status),
                rejection_reason=payload.rejection_reason,
            )
            return schemas.TransactionRead.model_validate(transaction)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception(
            "Failed to update transaction status",
            extra={"transaction_id": payload.transaction_id},
        )
        raise errors.server_error("Failed to update transaction status")
