# backend/lmsdb/apps/courses/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from lmsdb.database import Base, enum_values
from lmsdb.identifiers import prefixed


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class LessonType(str, enum.Enum):
    VIDEO = "video"
    DOCUMENT = "document"
    QUIZ = "quiz"


# ---------------------------------------------------------------------------
# COURSE STRUCTURE
# ---------------------------------------------------------------------------


class Course(Base):
    """
    A course owned by one tenant.

    Assessment content (`pre_test_content`, `final_assessment_content`) is a
    JSON array of questions, each with an ordered list of options carrying an
    `isCorrect` flag. The flags never leave the server for learners.
    """

    __tablename__ = "courses"
    __table_args__ = (
        Index("idx_courses_site_public", "site_id", "is_public"),
    )

    id = Column(String(36), primary_key=True, default=prefixed("CRS"))
    site_id = Column(String(64), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=False, default="General", index=True)
    image_path = Column(Text, nullable=True)

    venue = Column(String(255), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    price = Column(Numeric(10, 2), nullable=True)
    is_internal = Column(Boolean, nullable=False, default=True)
    is_public = Column(Boolean, nullable=False, default=False)

    pre_test_content = Column(Text, nullable=True)
    pre_test_passing_rate = Column(Integer, nullable=True)

    final_assessment_content = Column(Text, nullable=True)
    passing_rate = Column(Integer, nullable=True, doc="Percent; 80 when unset.")
    max_attempts = Column(Integer, nullable=False, default=3)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    modules = relationship(
        "CourseModule",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="CourseModule.order",
        lazy="selectin",
    )
    signatory_links = relationship(
        "CourseSignatory",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def signatory_ids(self) -> list:
        return [link.signatory_id for link in self.signatory_links]

    def __repr__(self) -> str:
        return f"<Course {self.id} {self.title!r}>"


class CourseModule(Base):
    __tablename__ = "modules"
    __table_args__ = (
        UniqueConstraint("course_id", "order", name="uq_modules_course_order"),
    )

    id = Column(String(36), primary_key=True, default=prefixed("MOD"))
    course_id = Column(
        String(36),
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False)
    order = Column(Integer, nullable=False, doc="1-based position within the course.")

    course = relationship("Course", back_populates="modules")
    lessons = relationship(
        "Lesson",
        back_populates="module",
        cascade="all, delete-orphan",
        order_by="Lesson.order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<CourseModule {self.course_id}#{self.order}>"


class Lesson(Base):
    __tablename__ = "lessons"
    __table_args__ = (
        UniqueConstraint("module_id", "order", name="uq_lessons_module_order"),
    )

    id = Column(String(36), primary_key=True, default=prefixed("LSN"))
    module_id = Column(
        String(36),
        ForeignKey("modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False)
    type = Column(
        Enum(LessonType, name="lesson_type_enum", values_callable=enum_values),
        nullable=False,
        default=LessonType.DOCUMENT,
    )
    content = Column(Text, nullable=True)
    image_path = Column(Text, nullable=True)
    order = Column(Integer, nullable=False)

    module = relationship("CourseModule", back_populates="lessons")

    def __repr__(self) -> str:
        return f"<Lesson {self.id} {self.type.value if self.type else '?'}>"


# ---------------------------------------------------------------------------
# ACCESS + PROGRESS
# ---------------------------------------------------------------------------
#
# user_id columns carry no foreign key: a super admin acting inside a
# branch has no row in that branch's users table.


class Enrollment(Base):
    """Presence of a row grants access to the course."""

    __tablename__ = "enrollments"

    user_id = Column(String(36), primary_key=True)
    course_id = Column(
        String(36),
        ForeignKey("courses.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    enrolled_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return f"<Enrollment {self.user_id}->{self.course_id}>"


class UserProgress(Base):
    __tablename__ = "user_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "lesson_id", name="uq_user_progress_user_lesson"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    lesson_id = Column(
        String(36),
        ForeignKey("lessons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<UserProgress {self.user_id}:{self.lesson_id} completed={self.completed}>"


# ---------------------------------------------------------------------------
# SIGNATORIES
# ---------------------------------------------------------------------------


class Signatory(Base):
    __tablename__ = "signatories"

    id = Column(String(36), primary_key=True, default=prefixed("SIG"))
    site_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    position = Column(String(255), nullable=True)
    signature_image_path = Column(Text, nullable=False)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return f"<Signatory {self.name!r}>"


class CourseSignatory(Base):
    """Signatories printed on certificates issued for the course."""

    __tablename__ = "course_signatories"

    course_id = Column(
        String(36),
        ForeignKey("courses.id", ondelete="CASCADE"),
        primary_key=True,
    )
    signatory_id = Column(
        String(36),
        ForeignKey("signatories.id", ondelete="CASCADE"),
        primary_key=True,
    )

    signatory = relationship("Signatory", lazy="joined")
