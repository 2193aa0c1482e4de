# backend/lmsdb/apps/certificates/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from lmsdb.database import Base, enum_values
from lmsdb.identifiers import prefixed


class CertificateType(str, enum.Enum):
    COMPLETION = "completion"
    RECOGNITION = "recognition"


class Certificate(Base):
    """
    Append-only ledger of completion and recognition events.

    Rows are never deleted by progress resets or retraining; deleting a
    course only nulls `course_id`.
    """

    __tablename__ = "certificates"
    __table_args__ = (
        Index("idx_certificates_user_course", "user_id", "course_id"),
    )

    id = Column(String(36), primary_key=True, default=prefixed("CERT"))
    site_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    course_id = Column(
        String(36),
        ForeignKey("courses.id", ondelete="SET NULL"),
        nullable=True,
    )

    completion_date = Column(DateTime(timezone=True), nullable=False)
    certificate_number = Column(
        String(40),
        nullable=False,
        unique=True,
        doc="{PREFIX}-{YYYYMMDD}-{NNNN}; immutable once issued.",
    )
    type = Column(
        Enum(CertificateType, name="certificate_type_enum", values_callable=enum_values),
        nullable=False,
        default=CertificateType.COMPLETION,
    )
    reason = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
    )

    signatory_links = relationship(
        "CertificateSignatory",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Certificate {self.certificate_number} {self.type.value if self.type else '?'}>"


class CertificateSignatory(Base):
    __tablename__ = "certificate_signatories"

    certificate_id = Column(
        String(36),
        ForeignKey("certificates.id", ondelete="CASCADE"),
        primary_key=True,
    )
    signatory_id = Column(
        String(36),
        ForeignKey("signatories.id", ondelete="CASCADE"),
        primary_key=True,
    )

    signatory = relationship("Signatory", lazy="joined")


class CertificateSerial(Base):
    """
    Daily numbering counter, one row per (prefix, day).

    The row is read under a row lock and incremented, so concurrent
    issuances on the same tenant-day serialise on it.
    """

    __tablename__ = "certificate_serials"

    prefix = Column(String(20), primary_key=True)
    serial_date = Column(Date, primary_key=True)
    last_serial = Column(Integer, nullable=False, default=0)
