# backend/lmsdb/apps/courses/schemas.py

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from lmsdb.apps.assessments.schemas import QuestionIn, StudentQuestion
from .models import LessonType

# ---------------------------------------------------------------------------
# SIGNATORIES
# ---------------------------------------------------------------------------


class SignatoryBase(BaseModel):
    name: str = Field(..., min_length=1)
    position: Optional[str] = None
    signature_image_path: str = Field(..., min_length=1)


class SignatoryCreate(SignatoryBase):
    pass


class SignatoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    position: Optional[str] = None
    signature_image_path: Optional[str] = Field(default=None, min_length=1)


class SignatoryRead(SignatoryBase):
    id: str

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# AUTHORING (admin)
# ---------------------------------------------------------------------------


class LessonIn(BaseModel):
    id: Optional[str] = Field(default=None, description="Existing lesson to keep; omit for new.")
    title: str = Field(..., min_length=1)
    type: LessonType = LessonType.DOCUMENT
    content: Optional[str] = None
    image_path: Optional[str] = None
    questions: Optional[List[QuestionIn]] = None


class ModuleIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(..., min_length=1)
    lessons: List[LessonIn] = Field(default_factory=list)


class CourseIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: str = "General"
    image_path: Optional[str] = None
    venue: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_internal: bool = True
    is_public: bool = False
    price: Optional[Decimal] = Field(default=None, ge=0)

    pre_test: Optional[List[QuestionIn]] = None
    pre_test_passing_rate: Optional[int] = Field(default=None, ge=0, le=100)
    final_assessment: Optional[List[QuestionIn]] = None
    passing_rate: Optional[int] = Field(default=None, ge=0, le=100)
    max_attempts: int = Field(default=3, ge=1)

    modules: List[ModuleIn] = Field(default_factory=list)
    signatory_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_rules(self) -> "CourseIn":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be on or after the start date.")
        if self.is_public and self.price is None:
            raise ValueError("Price must be a positive number for public courses.")
        if not (self.is_internal or self.is_public):
            raise ValueError(
                "A course must be available to at least one audience (Internal or Public)."
            )
        return self


class SignatoryAssignment(BaseModel):
    signatory_ids: List[str] = Field(default_factory=list)


class EnrollRequest(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)


class BulkEnrollmentRequest(BaseModel):
    course_id: str
    user_ids: List[str] = Field(default_factory=list)
    action: Literal["enroll", "unenroll"]


# ---------------------------------------------------------------------------
# READ MODELS
# ---------------------------------------------------------------------------


class CourseSummary(BaseModel):
    id: str
    title: str
    description: str = ""
    category: str = "General"
    image_path: Optional[str] = None
    venue: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_internal: bool = True
    is_public: bool = False
    price: Optional[Decimal] = None

    class Config:
        from_attributes = True


class LessonOutline(BaseModel):
    id: str
    title: str
    type: LessonType
    order: int
    completed: bool = False


class ModuleOutline(BaseModel):
    id: str
    title: str
    order: int
    lessons: List[LessonOutline] = Field(default_factory=list)


class CourseDetail(CourseSummary):
    modules: List[ModuleOutline] = Field(default_factory=list)
    progress: int = Field(default=0, description="Percent of lessons completed.")
    is_enrolled: bool = False
    has_pre_test: bool = False
    has_final_assessment: bool = False
    latest_certificate_id: Optional[str] = None


class LessonDetail(BaseModel):
    id: str
    course_id: str
    module_id: str
    title: str
    type: LessonType
    content: Optional[str] = None
    image_path: Optional[str] = None
    questions: Optional[List[StudentQuestion]] = None
    completed: bool = False
    previous_lesson_id: Optional[str] = None
    next_lesson_id: Optional[str] = None


class LessonAdminRead(BaseModel):
    id: str
    title: str
    type: LessonType
    order: int
    content: Optional[str] = None
    image_path: Optional[str] = None

    class Config:
        from_attributes = True


class ModuleAdminRead(BaseModel):
    id: str
    title: str
    order: int
    lessons: List[LessonAdminRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class CourseAdminRead(CourseSummary):
    pre_test_content: Optional[str] = None
    pre_test_passing_rate: Optional[int] = None
    final_assessment_content: Optional[str] = None
    passing_rate: Optional[int] = None
    max_attempts: int = 3
    modules: List[ModuleAdminRead] = Field(default_factory=list)
    signatory_ids: List[str] = Field(default_factory=list)


class LessonCompletionResponse(BaseModel):
    next_lesson_id: Optional[str] = Field(default=None, serialization_alias="nextLessonId")
    certificate_id: Optional[str] = Field(default=None, serialization_alias="certificateId")


class EnrollmentRead(BaseModel):
    user_id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    enrolled_at: datetime


class UserProgressRead(BaseModel):
    user_id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    completed_lessons: int
    total_lessons: int
    progress: int


class RetrainingResponse(BaseModel):
    users_reset: int


class BulkEnrollmentResponse(BaseModel):
    success: bool = True
    message: str
    affected: int = 0


class EnrollmentStatus(BaseModel):
    """Courses the learner can open, by enrollment or an open purchase."""

    user_course_ids: List[str] = Field(default_factory=list)
