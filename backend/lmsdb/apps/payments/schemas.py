# backend/lmsdb/apps/payments/schemas.py

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .models import TransactionStatus


class ManualPurchaseRequest(BaseModel):
    """Bank transfer / QR payment with an uploaded proof of payment."""

    proof_image_path: str = Field(..., min_length=1)
    reference_number: Optional[str] = None


class CheckoutResponse(BaseModel):
    transaction_id: int = Field(serialization_alias="transactionId")
    checkout_url: str = Field(serialization_alias="checkoutUrl")


class VerifyPaymentRequest(BaseModel):
    checkout_session_id: str = Field(..., min_length=1, alias="checkoutSessionId")

    class Config:
        populate_by_name = True


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    message: str


class TransactionStatusUpdate(BaseModel):
    transaction_id: int = Field(alias="transactionId")
    status: Literal["completed", "rejected"]
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason")

    class Config:
        populate_by_name = True


class TransactionRead(BaseModel):
    id: int
    user_id: str
    username: Optional[str] = None
    course_id: Optional[str] = None
    course_title: Optional[str] = None
    amount: Decimal
    status: TransactionStatus
    gateway: str
    gateway_transaction_id: Optional[str] = None
    proof_image_path: Optional[str] = None
    reference_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    transaction_date: datetime

    class Config:
        from_attributes = True


class PaymentHistoryRead(BaseModel):
    id: int
    course_id: Optional[str] = None
    course_title: Optional[str] = None
    amount: Decimal
    status: TransactionStatus
    rejection_reason: Optional[str] = None
    transaction_date: datetime
