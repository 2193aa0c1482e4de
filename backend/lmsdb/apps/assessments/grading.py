# backend/lmsdb/apps/assessments/grading.py

"""
Pure grading helpers: parse stored question sets, project them for
learners and score submitted answers. No database access here.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from .schemas import (
    AnswerOption,
    Question,
    QuestionIn,
    StudentOption,
    StudentQuestion,
)

DEFAULT_PASSING_RATE = 80

_questions_adapter = TypeAdapter(List[Question])


class InvalidContentError(ValueError):
    """Stored assessment content could not be parsed."""


@dataclass(frozen=True)
class GradeResult:
    score: int
    total: int
    correct_indices: List[int] = field(default_factory=list)

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return (self.score / self.total) * 100

    def passed(self, passing_rate: Optional[int]) -> bool:
        rate = DEFAULT_PASSING_RATE if passing_rate is None else passing_rate
        return self.total > 0 and self.percentage >= rate

    @property
    def perfect(self) -> bool:
        return self.total > 0 and self.score == self.total


def load_questions(raw: Optional[str]) -> List[Question]:
    if not raw:
        return []
    try:
        return _questions_adapter.validate_python(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise InvalidContentError("Stored assessment content is malformed.") from exc


def dump_questions(questions: Optional[Sequence[QuestionIn]]) -> Optional[str]:
    """Serialise authoring input to the stored shape (options carry isCorrect)."""
    if not questions:
        return None
    stored = [
        Question(
            text=question.text,
            options=[
                AnswerOption(text=option.text, is_correct=index == question.correct_option_index)
                for index, option in enumerate(question.options)
            ],
        )
        for question in questions
    ]
    return json.dumps([q.model_dump(by_alias=True) for q in stored])


def student_view(questions: Sequence[Question]) -> List[StudentQuestion]:
    """Strip the answer key before anything is sent to a learner."""
    return [
        StudentQuestion(
            text=question.text,
            options=[StudentOption(text=option.text) for option in question.options],
        )
        for question in questions
    ]


def grade_answers(questions: Sequence[Question], answers: Mapping[int, Optional[int]]) -> GradeResult:
    """
    One point per question whose selected option is the correct one.

    Unanswered questions and out-of-range selections simply score nothing.
    """
    correct: List[int] = []
    for index, question in enumerate(questions):
        expected = question.correct_index
        if expected is not None and answers.get(index) == expected:
            correct.append(index)
    return GradeResult(score=len(correct), total=len(questions), correct_indices=correct)
