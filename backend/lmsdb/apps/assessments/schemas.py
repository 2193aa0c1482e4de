# backend/lmsdb/apps/assessments/schemas.py

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# STORED CONTENT (server side only; carries the answer key)
# ---------------------------------------------------------------------------


class AnswerOption(BaseModel):
    text: str
    is_correct: bool = Field(default=False, alias="isCorrect")

    class Config:
        populate_by_name = True


class Question(BaseModel):
    text: str
    options: List[AnswerOption] = Field(default_factory=list)

    @property
    def correct_index(self) -> Optional[int]:
        for index, option in enumerate(self.options):
            if option.is_correct:
                return index
        return None


# ---------------------------------------------------------------------------
# AUTHORING INPUT (admin)
# ---------------------------------------------------------------------------


class QuestionOptionIn(BaseModel):
    text: str = Field(..., min_length=1)


class QuestionIn(BaseModel):
    text: str = Field(..., min_length=1)
    options: List[QuestionOptionIn] = Field(..., min_length=2)
    correct_option_index: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _correct_option_exists(self) -> "QuestionIn":
        if self.correct_option_index >= len(self.options):
            raise ValueError("correct_option_index must point at one of the options.")
        return self


# ---------------------------------------------------------------------------
# STUDENT-FACING PROJECTION
# ---------------------------------------------------------------------------


class StudentOption(BaseModel):
    text: str


class StudentQuestion(BaseModel):
    text: str
    options: List[StudentOption]


class AttemptRead(BaseModel):
    score: int
    total: int
    passed: bool
    attempt_date: datetime

    class Config:
        from_attributes = True


class AssessmentView(BaseModel):
    course_id: str
    course_title: str
    questions: List[StudentQuestion]
    passing_rate: int
    max_attempts: Optional[int] = None
    attempts: List[AttemptRead] = Field(default_factory=list)
    attempts_remaining: Optional[int] = None


# ---------------------------------------------------------------------------
# SUBMISSIONS
# ---------------------------------------------------------------------------


class AnswerSubmission(BaseModel):
    """
    Selected option per question, keyed by question index.

    A plain list is accepted too; position i is the answer to question i.
    """

    answers: Union[Dict[int, Optional[int]], List[Optional[int]]] = Field(default_factory=dict)

    @field_validator("answers", mode="after")
    @classmethod
    def _as_mapping(cls, value):
        if isinstance(value, list):
            return {index: choice for index, choice in enumerate(value)}
        return value


class GradeResponse(BaseModel):
    score: int
    total: int
    passed: bool


class FinalAssessmentResponse(GradeResponse):
    retake_required: bool = Field(default=False, serialization_alias="retakeRequired")
    attempts_remaining: int = Field(default=0, serialization_alias="attemptsRemaining")


class QuizResponse(GradeResponse):
    correctly_answered_indices: List[int] = Field(
        default_factory=list,
        serialization_alias="correctlyAnsweredIndices",
    )
    next_lesson_id: Optional[str] = Field(default=None, serialization_alias="nextLessonId")
    certificate_id: Optional[str] = Field(default=None, serialization_alias="certificateId")
