# backend/lmsdb/apps/sites/router.py

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import get_admin_db
from lmsdb.security import SessionContext, require_super_admin
from . import schemas, services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sites"])


@router.get("/sites", response_model=List[schemas.SiteRead])
def list_sites(db: Session = Depends(get_admin_db)):
    """Branches shown on the login page and in the site switcher."""
    return services.list_sites(db)


# ---------------------------------------------------------------------------
# BRANCH ADMINISTRATION (super admin)
# ---------------------------------------------------------------------------


@router.get("/admin/branches", response_model=List[schemas.SiteRead])
def list_branches(
    db: Session = Depends(get_admin_db),
    ctx: SessionContext = Depends(require_super_admin),
):
    return services.list_sites(db)


@router.post(
    "/admin/branches",
    response_model=schemas.SiteRead,
    status_code=status.HTTP_201_CREATED,
)
def create_branch(
    payload: schemas.BranchCreate,
    db: Session = Depends(get_admin_db),
    ctx: SessionContext = Depends(require_super_admin),
):
    try:
        return services.create_site(db, name=payload.name)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to create branch")
        raise errors.server_error("Failed to create branch")


@router.put("/admin/branches/{branch_id}", response_model=schemas.SiteRead)
def rename_branch(
    branch_id: str,
    payload: schemas.BranchUpdate,
    db: Session = Depends(get_admin_db),
    ctx: SessionContext = Depends(require_super_admin),
):
    try:
        return services.rename_site(db, branch_id, name=payload.name)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.delete("/admin/branches/{branch_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_branch(
    branch_id: str,
    db: Session = Depends(get_admin_db),
    ctx: SessionContext = Depends(require_super_admin),
):
    try:
        services.delete_site(db, branch_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
