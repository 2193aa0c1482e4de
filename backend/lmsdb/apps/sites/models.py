# backend/lmsdb/apps/sites/models.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, String

from lmsdb.database import Base


class CustomSite(Base):
    """
    Admin-created branch (tenant).

    Rows only live in the administrative tenant's store; the reserved
    tenants are built in and never appear here.
    """

    __tablename__ = "custom_sites"

    id = Column(
        String(64),
        primary_key=True,
        doc="Slug derived from the name at creation time; immutable.",
    )
    name = Column(String(255), nullable=False, unique=True)

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

    def __repr__(self) -> str:
        return f"<CustomSite {self.id} {self.name}>"
