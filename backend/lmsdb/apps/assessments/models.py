# backend/lmsdb/apps/assessments/models.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from lmsdb.database import Base


# ---------------------------------------------------------------------------
# ATTEMPT LOGS (append-only)
# ---------------------------------------------------------------------------


class QuizAttempt(Base):
    """Lesson quiz attempts, kept for analytics."""

    __tablename__ = "quiz_attempts"
    __table_args__ = (
        Index("idx_quiz_attempts_user_lesson", "user_id", "lesson_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False)
    course_id = Column(
        String(36),
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    lesson_id = Column(
        String(36),
        ForeignKey("lessons.id", ondelete="CASCADE"),
        nullable=False,
    )
    score = Column(Integer, nullable=False)
    total = Column(Integer, nullable=False)
    passed = Column(Boolean, nullable=False, default=False)
    attempt_date = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )


class PreTestAttempt(Base):
    """At most one row per (user, course); the unique constraint enforces it."""

    __tablename__ = "pre_test_attempts"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_pre_test_attempts_user_course"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    course_id = Column(
        String(36),
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    score = Column(Integer, nullable=False)
    total = Column(Integer, nullable=False)
    passed = Column(Boolean, nullable=False, default=False)
    attempt_date = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )


class FinalAssessmentAttempt(Base):
    __tablename__ = "final_assessment_attempts"
    __table_args__ = (
        Index("idx_final_attempts_user_course", "user_id", "course_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False)
    course_id = Column(
        String(36),
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
    )
    score = Column(Integer, nullable=False)
    total = Column(Integer, nullable=False)
    passed = Column(Boolean, nullable=False, default=False)
    attempt_date = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )
