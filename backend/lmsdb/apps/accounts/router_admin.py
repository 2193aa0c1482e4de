# backend/lmsdb/apps/accounts/router_admin.py

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.security import SessionContext, get_tenant_db, require_admin
from . import schemas, services

router = APIRouter(prefix="/admin", tags=["accounts-admin"])


# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------


@router.get("/users", response_model=List[schemas.UserRead])
def list_users(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    return services.list_users(db, site_id=ctx.site_id)


@router.post(
    "/users",
    response_model=schemas.UserRead,
    status_code=status.HTTP_201_CREATED,
)
def create_user(
    payload: schemas.UserCreate,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.create_user(db, site_id=ctx.site_id, data=payload)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.put("/users/{user_id}", response_model=schemas.UserRead)
def update_user(
    user_id: str,
    payload: schemas.UserUpdate,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.update_user(db, site_id=ctx.site_id, user_id=user_id, data=payload)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.post("/users/{user_id}/reset-password", response_model=schemas.UserRead)
def reset_password(
    user_id: str,
    payload: schemas.PasswordReset,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.reset_password(
            db,
            site_id=ctx.site_id,
            user_id=user_id,
            new_password=payload.new_password,
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        services.delete_user(
            db,
            site_id=ctx.site_id,
            user_id=user_id,
            acting_user_id=ctx.user.id,
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


# ---------------------------------------------------------------------------
# SETTINGS
# ---------------------------------------------------------------------------


@router.get("/settings", response_model=schemas.CompanySettingsRead)
def get_settings(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    return services.get_company_settings(db, site_id=ctx.site_id)


@router.put("/settings", response_model=schemas.CompanySettingsRead)
def update_settings(
    payload: schemas.CompanySettingsUpdate,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    return services.update_company_settings(db, site_id=ctx.site_id, data=payload)
