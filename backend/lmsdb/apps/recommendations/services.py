from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from lmsdb.security import SessionUser
from lmsdb.apps.courses import services as course_services
from lmsdb.apps.courses.models import Course, Enrollment
from . import schemas
from .client import RecommenderClient, RecommenderError, RecommenderNotConfiguredError

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 3

_recommendations_adapter = TypeAdapter(List[schemas.Recommendation])


def _enrolled_titles(db: Session, *, user_id: str) -> List[str]:
    rows = (
        db.query(Course.title)
        .join(Enrollment, Enrollment.course_id == Course.id)
        .filter(Enrollment.user_id == user_id)
        .order_by(Course.title.asc())
        .all()
    )
    return [row.title for row in rows]


def recommend_courses(
    db: Session,
    *,
    user: SessionUser,
    client: Optional[RecommenderClient],
) -> List[schemas.Recommendation]:
    """
    Suggest up to three not-yet-enrolled courses.

    Nothing to choose from means no call to the recommender at all. Only
    suggestions naming a course that is actually available are returned.
    """
    enrolled = _enrolled_titles(db, user_id=user.id)
    enrolled_set = set(enrolled)
    available = [
        course.title
        for course in course_services.list_available_courses(db, user=user)
        if course.title not in enrolled_set
    ]
    if not available:
        return []
    if client is None:
        raise RecommenderNotConfiguredError()

    output = client.recommend(enrolled_courses=enrolled, available_courses=available)
    try:
        items = _recommendations_adapter.validate_python(
            (output or {}).get("recommendations", []) if isinstance(output, dict) else output
        )
    except ValidationError:
        logger.warning("Recommender output did not match the expected shape", extra={"user_id": user.id})
        raise RecommenderError()

    allowed = set(available)
    return [item for item in items if item.title in allowed][:MAX_RECOMMENDATIONS]
