# backend/lmsdb/apps/dashboard/router.py

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.security import SessionContext, get_tenant_db, require_admin, require_session
from . import schemas, services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard", response_model=schemas.DashboardRead)
def dashboard(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.learner_dashboard(db, user=ctx.user)
    except Exception:
        logger.exception("Failed to build dashboard", extra={"site_id": ctx.site_id})
        raise errors.server_error("Failed to fetch dashboard data")


@router.get("/admin/analytics", response_model=schemas.AnalyticsRead)
def analytics(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.site_analytics(db)
    except Exception:
        logger.exception("Failed to build analytics", extra={"site_id": ctx.site_id})
        raise errors.server_error("Failed to fetch analytics data.")
