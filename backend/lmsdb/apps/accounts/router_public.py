# backend/lmsdb/apps/accounts/router_public.py

from __future__ import annotations

import logging
from contextlib import closing
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import (
    ADMIN_SITE_ID,
    EXTERNAL_SITE_ID,
    TenantStoreRegistry,
    get_admin_db,
    get_registry,
)
from lmsdb.security import (
    SessionContext,
    clear_session_cookies,
    require_session,
    require_super_admin,
    set_session_cookies,
    set_site_cookie,
)
from lmsdb.apps.sites import services as site_services
from lmsdb.apps.sites.schemas import SiteRead
from . import schemas, services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


# ---------------------------------------------------------------------------
# LOGIN / LOGOUT
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=schemas.LoginResponse)
def login(
    payload: schemas.LoginRequest,
    response: Response,
    admin_db: Session = Depends(get_admin_db),
    registry: TenantStoreRegistry = Depends(get_registry),
):
    """
    Login with username and password inside one site.

    Super admins log into the administrative site and use `/auth/switch-site`
    to act inside other branches.
    """
    site_id = (payload.site_id or ADMIN_SITE_ID).strip()
    if not site_services.site_exists(admin_db, site_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password.",
        )

    try:
        with closing(registry.open(site_id)) as db:
            user = services.authenticate_user(
                db,
                site_id=site_id,
                username=payload.username,
                password=payload.password,
            )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)

    set_session_cookies(response, user_id=user.id, site_id=site_id)
    logger.info("User logged in", extra={"site_id": site_id, "user_id": user.id})
    return schemas.LoginResponse(
        site_id=site_id,
        user=schemas.SessionUserRead.model_validate(user),
    )


@router.post("/auth/logout")
def logout(response: Response):
    clear_session_cookies(response)
    return {"success": True}


@router.get("/auth/me", response_model=schemas.SessionRead)
def me(
    admin_db: Session = Depends(get_admin_db),
    ctx: SessionContext = Depends(require_session),
):
    site = site_services.get_site(admin_db, ctx.site_id)
    if site is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return schemas.SessionRead(
        user=schemas.SessionUserRead.model_validate(ctx.user),
        site=SiteRead.model_validate(site),
        is_super_admin=ctx.is_super_admin,
    )


# ---------------------------------------------------------------------------
# SIGNUP
# ---------------------------------------------------------------------------


@router.post(
    "/auth/signup",
    response_model=schemas.UserRead,
    status_code=status.HTTP_201_CREATED,
)
def signup(
    payload: schemas.SignupRequest,
    registry: TenantStoreRegistry = Depends(get_registry),
):
    """Register an External learner in the external site."""
    try:
        with closing(registry.open(EXTERNAL_SITE_ID)) as db:
            return services.register_external_user(db, data=payload)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


# ---------------------------------------------------------------------------
# SITE SWITCHING (super admin)
# ---------------------------------------------------------------------------


@router.post("/auth/switch-site", response_model=SiteRead)
def switch_site(
    payload: schemas.SwitchSiteRequest,
    response: Response,
    admin_db: Session = Depends(get_admin_db),
    ctx: SessionContext = Depends(require_super_admin),
):
    site = site_services.get_site(admin_db, payload.site_id.strip())
    if site is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid site specified.",
        )
    set_site_cookie(response, site.id)
    logger.info(
        "Super admin switched site",
        extra={"user_id": ctx.user.id, "site_id": site.id},
    )
    return site


# ---------------------------------------------------------------------------
# PUBLIC SETTINGS
# ---------------------------------------------------------------------------


@router.get("/settings/public", response_model=List[schemas.PaymentQrCode])
def public_settings(registry: TenantStoreRegistry = Depends(get_registry)):
    """Manual payment QR codes, kept with the external site's settings."""
    with closing(registry.open(EXTERNAL_SITE_ID)) as db:
        return services.list_payment_qr_codes(db, site_id=EXTERNAL_SITE_ID)
