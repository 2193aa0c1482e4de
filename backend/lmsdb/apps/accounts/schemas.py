# backend/lmsdb/apps/accounts/schemas.py

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from lmsdb.apps.sites.schemas import SiteRead
from .models import UserRole, UserType

# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------


class UserBase(BaseModel):
    full_name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class UserCreate(UserBase):
    username: str = Field(..., min_length=3, max_length=150)
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.EMPLOYEE
    type: UserType = UserType.EMPLOYEE


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Optional[UserRole] = None
    type: Optional[UserType] = None
    is_active: Optional[bool] = None


class PasswordReset(BaseModel):
    new_password: str = Field(..., min_length=6)


class UserRead(UserBase):
    id: str
    site_id: str
    username: str
    role: UserRole
    type: UserType
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# AUTH
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    site_id: Optional[str] = Field(
        default=None,
        description="Branch to log into; the administrative site when omitted.",
    )


class SignupRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=150)
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class SwitchSiteRequest(BaseModel):
    site_id: str = Field(..., min_length=1)


class SessionUserRead(BaseModel):
    id: str
    site_id: str
    username: str
    role: UserRole
    type: UserType
    full_name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    class Config:
        from_attributes = True


class SessionRead(BaseModel):
    user: SessionUserRead
    site: SiteRead
    is_super_admin: bool = False


class LoginResponse(BaseModel):
    success: bool = True
    site_id: str
    user: SessionUserRead


# ---------------------------------------------------------------------------
# SETTINGS
# ---------------------------------------------------------------------------


class PaymentQrCode(BaseModel):
    label: str
    path: str


class CompanySettingsRead(BaseModel):
    company_name: str = ""
    company_logo_path: str = ""
    company_logo_2_path: str = ""
    company_address: str = ""
    payment_qr_codes: List[PaymentQrCode] = Field(default_factory=list)


class CompanySettingsUpdate(BaseModel):
    company_name: str = Field(..., min_length=1)
    company_logo_path: Optional[str] = None
    company_logo_2_path: Optional[str] = None
    company_address: Optional[str] = None
    payment_qr_codes: Optional[List[PaymentQrCode]] = Field(default=None, max_length=4)
