# backend/lmsdb/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    String,
    Text,
    UniqueConstraint,
)

from lmsdb.database import Base, enum_values
from lmsdb.identifiers import prefixed


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class UserRole(str, enum.Enum):
    """An Admin in the administrative tenant is a super admin."""

    EMPLOYEE = "Employee"
    ADMIN = "Admin"


class UserType(str, enum.Enum):
    EMPLOYEE = "Employee"
    EXTERNAL = "External"


# ---------------------------------------------------------------------------
# USER
# ---------------------------------------------------------------------------


class User(Base):
    """
    Learner or administrator account, owned by exactly one tenant.

    `username_key` is the case-folded username and carries the per-tenant
    uniqueness constraint, so 'JDoe' and 'jdoe' cannot coexist.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("site_id", "username_key", name="uq_users_site_username"),
    )

    id = Column(String(36), primary_key=True, default=prefixed("USR"))
    site_id = Column(String(64), nullable=False, index=True)

    username = Column(String(150), nullable=False)
    username_key = Column(String(150), nullable=False, index=True)
    hashed_password = Column(Text, nullable=False)

    full_name = Column(String(255), nullable=True)
    department = Column(String(255), nullable=True)
    position = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)

    role = Column(
        Enum(UserRole, name="user_role_enum", values_callable=enum_values),
        nullable=False,
        default=UserRole.EMPLOYEE,
        index=True,
    )
    type = Column(
        Enum(UserType, name="user_type_enum", values_callable=enum_values),
        nullable=False,
        default=UserType.EMPLOYEE,
    )

    is_active = Column(Boolean, nullable=False, default=True)

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

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User {self.site_id}:{self.username} ({self.role.value if self.role else '?'})>"


# ---------------------------------------------------------------------------
# APP SETTINGS
# ---------------------------------------------------------------------------


class AppSetting(Base):
    """
    Tenant-scoped key/value settings: company name and address, logos,
    QR codes for manual payment. Values that are files hold the stored path.
    """

    __tablename__ = "app_settings"

    site_id = Column(String(64), primary_key=True)
    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    def __repr__(self) -> str:
        return f"<AppSetting {self.site_id}:{self.key}>"
