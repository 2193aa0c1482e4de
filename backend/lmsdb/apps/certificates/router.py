# backend/lmsdb/apps/certificates/router.py

from __future__ import annotations

import logging
from contextlib import closing
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import TenantStoreRegistry, get_admin_db, get_registry
from lmsdb.security import SessionContext, get_tenant_db, require_admin, require_session
from lmsdb.apps.sites import services as site_services
from . import schemas, services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["certificates"])


# ---------------------------------------------------------------------------
# LEARNER
# ---------------------------------------------------------------------------


@router.get("/profile/certificates", response_model=List[schemas.CertificateSummary])
def my_certificates(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    return services.list_user_certificates(db, user_id=ctx.user.id)


@router.get("/profile/certificates/{certificate_id}", response_model=schemas.CertificateDetail)
def my_certificate(
    certificate_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        view = services.get_certificate_for_user(
            db,
            certificate_id=certificate_id,
            user_id=ctx.user.id,
            allow_any=ctx.is_admin or ctx.is_super_admin,
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    return schemas.CertificateDetail.model_validate(view)


# ---------------------------------------------------------------------------
# PUBLIC VALIDATION
# ---------------------------------------------------------------------------


@router.get("/certificates/validate", response_model=schemas.CertificateDetail)
def validate_certificate(
    number: str = Query(..., min_length=1),
    site_id: str = Query(..., min_length=1),
    admin_db: Session = Depends(get_admin_db),
    registry: TenantStoreRegistry = Depends(get_registry),
):
    """Anyone holding a certificate number and its branch can verify it."""
    if not site_services.site_exists(admin_db, site_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not found.")

    try:
        with closing(registry.open(site_id)) as db:
            view = services.validate_certificate(db, number=number, site_id=site_id)
            return schemas.CertificateDetail.model_validate(view)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


# ---------------------------------------------------------------------------
# ADMIN
# ---------------------------------------------------------------------------


@router.get("/admin/certificates", response_model=List[schemas.CertificateSummary])
def list_certificates(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    return services.list_certificates(db, site_id=ctx.site_id)


@router.post(
    "/admin/certificates/recognition",
    response_model=schemas.CertificateSummary,
    status_code=status.HTTP_201_CREATED,
)
def issue_recognition(
    payload: schemas.RecognitionRequest,
    admin_db: Session = Depends(get_admin_db),
    registry: TenantStoreRegistry = Depends(get_registry),
    ctx: SessionContext = Depends(require_admin),
):
    target_site = (payload.site_id or ctx.site_id).strip()
    if target_site != ctx.site_id:
        if not ctx.is_super_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Unauthorized: Super Admin access required",
            )
        if not site_services.site_exists(admin_db, target_site):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid site specified.",
            )

    try:
        with closing(registry.open(target_site)) as db:
            certificate = services.issue_recognition_certificate(
                db,
                site_id=target_site,
                user_id=payload.user_id,
                reason=payload.reason,
                signatory_ids=payload.signatory_ids,
                issued_on=payload.issued_on,
            )
            return schemas.CertificateSummary.model_validate(certificate)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception(
            "Failed to issue recognition certificate",
            extra={"site_id": target_site, "user_id": payload.user_id},
        )
        raise errors.server_error("Failed to issue recognition certificate")
