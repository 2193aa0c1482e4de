# backend/lmsdb/apps/courses/router.py

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.security import SessionContext, get_tenant_db, require_admin, require_session
from . import schemas, services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["courses"])


# ---------------------------------------------------------------------------
# LEARNER
# ---------------------------------------------------------------------------


@router.get("/courses", response_model=List[schemas.CourseSummary])
def list_courses(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    return services.list_available_courses(db, user=ctx.user)


@router.get("/courses/{course_id}", response_model=schemas.CourseDetail)
def get_course(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.get_course_detail(db, user=ctx.user, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.get("/courses/{course_id}/lessons/{lesson_id}", response_model=schemas.LessonDetail)
def get_lesson(
    course_id: str,
    lesson_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        return services.get_lesson_detail(db, user=ctx.user, course_id=course_id, lesson_id=lesson_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.post(
    "/courses/{course_id}/lessons/{lesson_id}/complete",
    response_model=schemas.LessonCompletionResponse,
)
def complete_lesson(
    course_id: str,
    lesson_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        result = services.complete_lesson(
            db,
            user=ctx.user,
            site_id=ctx.site_id,
            course_id=course_id,
            lesson_id=lesson_id,
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception(
            "Failed to complete lesson",
            extra={"site_id": ctx.site_id, "course_id": course_id, "lesson_id": lesson_id},
        )
        raise errors.server_error("Failed to complete lesson")

    return schemas.LessonCompletionResponse(
        next_lesson_id=result.next_lesson_id,
        certificate_id=result.certificate_id,
    )


@router.post("/courses/{course_id}/retake", status_code=status.HTTP_204_NO_CONTENT)
def retake_course(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    try:
        services.retake_course(db, user=ctx.user, site_id=ctx.site_id, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to reset course progress", extra={"course_id": course_id})
        raise errors.server_error("Failed to reset course progress")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/profile/enrollment-status", response_model=schemas.EnrollmentStatus)
def enrollment_status(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_session),
):
    return schemas.EnrollmentStatus(
        user_course_ids=services.accessible_course_ids(db, user=ctx.user),
    )


# ---------------------------------------------------------------------------
# COURSE ADMINISTRATION
# ---------------------------------------------------------------------------


@router.get("/admin/courses", response_model=List[schemas.CourseAdminRead])
def admin_list_courses(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    return services.list_courses(db)


@router.post(
    "/admin/courses",
    response_model=schemas.CourseAdminRead,
    status_code=status.HTTP_201_CREATED,
)
def admin_create_course(
    payload: schemas.CourseIn,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.create_course(db, site_id=ctx.site_id, data=payload)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to create course", extra={"site_id": ctx.site_id})
        raise errors.server_error("Failed to create course")


@router.get("/admin/courses/{course_id}", response_model=schemas.CourseAdminRead)
def admin_get_course(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.get_course(db, course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.put("/admin/courses/{course_id}", response_model=schemas.CourseAdminRead)
def admin_update_course(
    course_id: str,
    payload: schemas.CourseIn,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.update_course(db, course_id=course_id, data=payload)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to update course", extra={"course_id": course_id})
        raise errors.server_error("Failed to update course")


@router.delete("/admin/courses/{course_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_course(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        services.delete_course(db, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to delete course", extra={"course_id": course_id})
        raise errors.server_error("Failed to delete course")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/admin/courses/{course_id}/signatories", response_model=schemas.CourseAdminRead)
def admin_set_signatories(
    course_id: str,
    payload: schemas.SignatoryAssignment,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.set_course_signatories(
            db, course_id=course_id, signatory_ids=payload.signatory_ids
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.get("/admin/courses/{course_id}/enrollments", response_model=List[schemas.EnrollmentRead])
def admin_list_enrollments(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.list_enrollments(db, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.post("/admin/courses/{course_id}/enrollments", response_model=List[schemas.EnrollmentRead])
def admin_enroll_users(
    course_id: str,
    payload: schemas.EnrollRequest,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        services.enroll_users(db, course_id=course_id, user_ids=payload.user_ids)
        return services.list_enrollments(db, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.delete(
    "/admin/courses/{course_id}/enrollments/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def admin_unenroll_user(
    course_id: str,
    user_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        services.unenroll_user(db, course_id=course_id, user_id=user_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/admin/courses/{course_id}/progress", response_model=List[schemas.UserProgressRead])
def admin_course_progress(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.course_progress_report(db, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.post("/admin/courses/{course_id}/retraining", response_model=schemas.RetrainingResponse)
def admin_start_retraining(
    course_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        reset = services.retrain_cohort(db, site_id=ctx.site_id, course_id=course_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception("Failed to start retraining", extra={"course_id": course_id})
        raise errors.server_error("Failed to start retraining")
    return schemas.RetrainingResponse(users_reset=reset)


@router.get("/admin/categories", response_model=List[str])
def admin_list_categories(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    return services.list_categories(db)


@router.get("/admin/enrollments/{user_id}", response_model=List[str])
def admin_user_enrollments(
    user_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    """Ids of the courses a user is enrolled in."""
    try:
        return services.user_enrollments(db, user_id=user_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.post("/admin/enrollments/bulk", response_model=schemas.BulkEnrollmentResponse)
def admin_bulk_enrollments(
    payload: schemas.BulkEnrollmentRequest,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    if not payload.user_ids:
        return schemas.BulkEnrollmentResponse(message="No users to update.")
    try:
        affected = services.bulk_update_enrollments(
            db,
            course_id=payload.course_id,
            user_ids=payload.user_ids,
            action=payload.action,
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    except Exception:
        logger.exception(
            "Bulk enrollment failed",
            extra={"course_id": payload.course_id, "action": payload.action},
        )
        raise errors.server_error(f"Failed to bulk {payload.action} users")
    return schemas.BulkEnrollmentResponse(
        message=f"Bulk {payload.action} successful.",
        affected=affected,
    )


# ---------------------------------------------------------------------------
# SIGNATORIES
# ---------------------------------------------------------------------------


@router.get("/admin/signatories", response_model=List[schemas.SignatoryRead])
def admin_list_signatories(
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    return services.list_signatories(db, site_id=ctx.site_id)


@router.post(
    "/admin/signatories",
    response_model=schemas.SignatoryRead,
    status_code=status.HTTP_201_CREATED,
)
def admin_create_signatory(
    payload: schemas.SignatoryCreate,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    return services.create_signatory(db, site_id=ctx.site_id, data=payload)


@router.put("/admin/signatories/{signatory_id}", response_model=schemas.SignatoryRead)
def admin_update_signatory(
    signatory_id: str,
    payload: schemas.SignatoryUpdate,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        return services.update_signatory(
            db, site_id=ctx.site_id, signatory_id=signatory_id, data=payload
        )
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)


@router.delete("/admin/signatories/{signatory_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_signatory(
    signatory_id: str,
    db: Session = Depends(get_tenant_db),
    ctx: SessionContext = Depends(require_admin),
):
    try:
        services.delete_signatory(db, site_id=ctx.site_id, signatory_id=signatory_id)
    except errors.DomainError as exc:
        raise errors.to_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
