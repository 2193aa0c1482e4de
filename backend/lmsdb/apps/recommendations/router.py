# backend/lmsdb/apps/recommendations/router.py

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.security import SessionContext, get_tenant_db, require_session
from . import schemas, services
from .client import RecommenderClient, get_recommender

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])


@router.get("/recommendations", response_model=schemas.RecommendationsResponse)
def get_recommendations(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
    client: Optional[RecommenderClient] = Depends(get_recommender),
):
    try:
        items = services.recommend_courses(db, user=ctx.user, client=client)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to get recommendations", extra={"site_id": ctx.site_id})
        raise errors.server_error("Failed to get recommendations. Please try again.")
    return schemas.RecommendationsResponse(recommendations=items)
