# backend/lmsdb/apps/assessments/router.py

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.security import SessionContext, get_tenant_db, require_session
from . import schemas, services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/courses/{course_id}", tags=["assessments"])


@router.get("/pre-test", response_model=schemas.AssessmentView)
def get_pre_test(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.get_pre_test_view(db, user=ctx.user, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.post("/pre-test", response_model=schemas.GradeResponse)
def submit_pre_test(
    course_id: str,
    payload: schemas.AnswerSubmission,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.submit_pre_test(
            db, user=ctx.user, course_id=course_id, answers=payload.answers
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to submit pre-test", extra={"course_id": course_id})
        raise errors.server_error("Failed to submit pre-test")


@router.get("/assessment", response_model=schemas.AssessmentView)
def get_final_assessment(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.get_final_assessment_view(db, user=ctx.user, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.post("/assessment", response_model=schemas.FinalAssessmentResponse)
def submit_final_assessment(
    course_id: str,
    payload: schemas.AnswerSubmission,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.submit_final_assessment(
            db, user=ctx.user, course_id=course_id, answers=payload.answers
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to submit assessment", extra={"course_id": course_id})
        raise errors.server_error("Failed to submit assessment")


@router.post("/lessons/{lesson_id}/quiz", response_model=schemas.QuizResponse)
def submit_quiz(
    course_id: str,
    lesson_id: str,
    payload: schemas.AnswerSubmission,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.submit_lesson_quiz(
            db,
            user=ctx.user,
            site_id=ctx.site_id,
            course_id=course_id,
            lesson_id=lesson_id,
            answers=payload.answers,
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception(
            "Failed to submit quiz",
            extra={"course_id": course_id, "lesson_id": lesson_id},
        )
        raise errors.server_error("Failed to submit quiz")
