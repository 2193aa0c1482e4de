# backend/lmsdb/apps/certificates/schemas.py

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import CertificateType


class CertificateSignatoryRead(BaseModel):
    id: str
    name: str
    position: Optional[str] = None
    signature_image_path: str

    class Config:
        from_attributes = True


class CertificateSummary(BaseModel):
    id: str
    certificate_number: str
    type: CertificateType
    completion_date: datetime
    site_id: str
    user_id: str
    course_id: Optional[str] = None
    reason: Optional[str] = None

    class Config:
        from_attributes = True


class CertificateDetail(BaseModel):
    """Everything a certificate page (or a validation lookup) renders."""

    id: str
    certificate_number: str
    type: CertificateType
    completion_date: datetime
    site_id: str
    reason: Optional[str] = None
    course_id: Optional[str] = None
    course_title: Optional[str] = None
    course_venue: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    company_name: str
    company_address: Optional[str] = None
    company_logo_path: Optional[str] = None
    company_logo_2_path: Optional[str] = None
    signatories: List[CertificateSignatoryRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class RecognitionRequest(BaseModel):
    user_id: str
    reason: str = Field(..., min_length=10)
    signatory_ids: List[str] = Field(..., min_length=1)
    issued_on: Optional[date] = None
    site_id: Optional[str] = Field(
        default=None,
        description="Target branch; only super admins may name a branch other than their own.",
    )

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 10:
            raise ValueError("Reason must be at least 10 characters.")
        return value
