# backend/lmsdb/apps/payments/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)

from lmsdb.database import Base, enum_values


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.REJECTED,
        TransactionStatus.FAILED,
    }
)


class Transaction(Base):
    """
    Purchase intent for a paid course.

    Lifecycle: pending -> completed | rejected (admin review)
               pending -> completed | failed   (gateway confirmation)

    The partial unique index allows at most one non-failed transaction per
    (user, course), which also closes the race between two simultaneous
    purchase submissions.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index(
            "uq_transactions_user_course_open",
            "user_id",
            "course_id",
            unique=True,
            sqlite_where=text("status <> 'failed'"),
            postgresql_where=text("status <> 'failed'"),
        ),
        Index("idx_transactions_status_date", "status", "transaction_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    course_id = Column(
        String(36),
        ForeignKey("courses.id", ondelete="SET NULL"),
        nullable=True,
    )

    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(
        Enum(TransactionStatus, name="transaction_status_enum", values_callable=enum_values),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    gateway = Column(String(32), nullable=False, default="manual")
    gateway_transaction_id = Column(String(255), nullable=True, index=True)
    proof_image_path = Column(Text, nullable=True)
    reference_number = Column(String(255), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    transaction_date = Column(
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

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.status.value if self.status else '?'}>"
