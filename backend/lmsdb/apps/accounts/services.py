from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from fastapi import status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import EXTERNAL_SITE_ID, atomic
from lmsdb.security import get_password_hash, verify_password
from . import models, schemas
from .models import UserRole, UserType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COMPANY_NAME = "company_name"
COMPANY_LOGO_PATH = "company_logo_path"
COMPANY_LOGO_2_PATH = "company_logo_2_path"
COMPANY_ADDRESS = "company_address"
COMPANY_SETTING_KEYS = (
    COMPANY_NAME,
    COMPANY_LOGO_PATH,
    COMPANY_LOGO_2_PATH,
    COMPANY_ADDRESS,
)
MAX_PAYMENT_QR_CODES = 4


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AuthenticationError(errors.DomainError):
    """Raised when login credentials are invalid or the account is disabled."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid username or password."


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------


def _normalise_username(value: str) -> str:
    return (value or "").strip()


def _username_key(value: str) -> str:
    return _normalise_username(value).lower()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_user_by_id(db: Session, user_id: str) -> Optional[models.User]:
    if not user_id:
        return None
    return db.get(models.User, str(user_id).strip())


def get_user_by_username(
    db: Session,
    *,
    site_id: str,
    username: str,
) -> Optional[models.User]:
    return (
        db.query(models.User)
        .filter(
            models.User.site_id == site_id,
            models.User.username_key == _username_key(username),
        )
        .first()
    )


def _require_user(db: Session, *, site_id: str, user_id: str) -> models.User:
    user = get_user_by_id(db, user_id)
    if user is None or user.site_id != site_id:
        raise errors.NotFoundError("User not found.")
    return user


def list_users(db: Session, *, site_id: str) -> List[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.site_id == site_id)
        .order_by(models.User.username_key.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# User commands
# ---------------------------------------------------------------------------


def create_user(
    db: Session,
    *,
    site_id: str,
    data: schemas.UserCreate,
) -> models.User:
    """
    Create a user inside one site.

    Usernames are unique per site, compared case-insensitively. The storage
    constraint on `username_key` closes the race between two concurrent
    creations of the same name.
    """
    username = _normalise_username(data.username)
    if get_user_by_username(db, site_id=site_id, username=username) is not None:
        raise errors.ConflictError("Username already exists.")

    user = models.User(
        site_id=site_id,
        username=username,
        username_key=_username_key(username),
        hashed_password=get_password_hash(data.password),
        full_name=data.full_name,
        department=data.department,
        position=data.position,
        email=str(data.email) if data.email else None,
        phone=data.phone,
        role=data.role,
        type=data.type,
    )
    try:
        with atomic(db, operation="create_user", site_id=site_id, username=username):
            db.add(user)
            db.flush()
    except IntegrityError:
        raise errors.ConflictError("Username already exists.")

    logger.info(
        "User created",
        extra={"site_id": site_id, "user_id": user.id, "role": user.role.value},
    )
    return user


def register_external_user(db: Session, *, data: schemas.SignupRequest) -> models.User:
    """Self-service signup: always an External learner in the external site."""
    return create_user(
        db,
        site_id=EXTERNAL_SITE_ID,
        data=schemas.UserCreate(
            username=data.username,
            password=data.password,
            full_name=data.full_name,
            email=data.email,
            phone=data.phone,
            role=UserRole.EMPLOYEE,
            type=UserType.EXTERNAL,
        ),
    )


def update_user(
    db: Session,
    *,
    site_id: str,
    user_id: str,
    data: schemas.UserUpdate,
) -> models.User:
    user = _require_user(db, site_id=site_id, user_id=user_id)

    fields = data.model_dump(exclude_unset=True)
    for required in ("role", "type", "is_active"):
        if fields.get(required, True) is None:
            fields.pop(required)
    if "email" in fields and fields["email"] is not None:
        fields["email"] = str(fields["email"])

    with atomic(db, operation="update_user", site_id=site_id, user_id=user_id):
        for field, value in fields.items():
            setattr(user, field, value)

    return user


def reset_password(
    db: Session,
    *,
    site_id: str,
    user_id: str,
    new_password: str,
) -> models.User:
    user = _require_user(db, site_id=site_id, user_id=user_id)
    with atomic(db, operation="reset_password", site_id=site_id, user_id=user_id):
        user.hashed_password = get_password_hash(new_password)
    logger.info("Password reset by admin", extra={"site_id": site_id, "user_id": user_id})
    return user


def delete_user(
    db: Session,
    *,
    site_id: str,
    user_id: str,
    acting_user_id: str,
) -> None:
    if user_id == acting_user_id:
        raise errors.ValidationError("You cannot delete your own account.")
    user = _require_user(db, site_id=site_id, user_id=user_id)
    with atomic(db, operation="delete_user", site_id=site_id, user_id=user_id):
        db.delete(user)
    logger.info("User deleted", extra={"site_id": site_id, "user_id": user_id})


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def authenticate_user(
    db: Session,
    *,
    site_id: str,
    username: str,
    password: str,
) -> models.User:
    user = get_user_by_username(db, site_id=site_id, username=username)
    if user is None or not verify_password(password, user.hashed_password):
        raise AuthenticationError()
    if not user.is_active:
        raise AuthenticationError("Inactive user account.")
    return user


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def get_settings(db: Session, *, site_id: str, keys: Iterable[str]) -> Dict[str, str]:
    keys = list(keys)
    if not keys:
        return {}
    rows = (
        db.query(models.AppSetting)
        .filter(
            models.AppSetting.site_id == site_id,
            models.AppSetting.key.in_(keys),
        )
        .all()
    )
    return {row.key: row.value or "" for row in rows}


def _qr_keys() -> List[str]:
    keys: List[str] = []
    for index in range(1, MAX_PAYMENT_QR_CODES + 1):
        keys.extend([f"qr_code_{index}_label", f"qr_code_{index}_path"])
    return keys


def list_payment_qr_codes(db: Session, *, site_id: str = EXTERNAL_SITE_ID) -> List[schemas.PaymentQrCode]:
    """QR codes for manual payment; slots missing a label or path are skipped."""
    values = get_settings(db, site_id=site_id, keys=_qr_keys())
    codes: List[schemas.PaymentQrCode] = []
    for index in range(1, MAX_PAYMENT_QR_CODES + 1):
        label = values.get(f"qr_code_{index}_label", "")
        path = values.get(f"qr_code_{index}_path", "")
        if label and path:
            codes.append(schemas.PaymentQrCode(label=label, path=path))
    return codes


def get_company_settings(db: Session, *, site_id: str) -> schemas.CompanySettingsRead:
    values = get_settings(db, site_id=site_id, keys=COMPANY_SETTING_KEYS)
    return schemas.CompanySettingsRead(
        company_name=values.get(COMPANY_NAME, ""),
        company_logo_path=values.get(COMPANY_LOGO_PATH, ""),
        company_logo_2_path=values.get(COMPANY_LOGO_2_PATH, ""),
        company_address=values.get(COMPANY_ADDRESS, ""),
        payment_qr_codes=list_payment_qr_codes(db, site_id=site_id),
    )


def update_company_settings(
    db: Session,
    *,
    site_id: str,
    data: schemas.CompanySettingsUpdate,
) -> schemas.CompanySettingsRead:
    values = {
        COMPANY_NAME: data.company_name,
        COMPANY_LOGO_PATH: data.company_logo_path or "",
        COMPANY_LOGO_2_PATH: data.company_logo_2_path or "",
        COMPANY_ADDRESS: data.company_address or "",
    }
    if data.payment_qr_codes is not None:
        for index in range(1, MAX_PAYMENT_QR_CODES + 1):
            code = data.payment_qr_codes[index - 1] if index <= len(data.payment_qr_codes) else None
            values[f"qr_code_{index}_label"] = code.label if code else ""
            values[f"qr_code_{index}_path"] = code.path if code else ""

    with atomic(db, operation="update_settings", site_id=site_id):
        for key, value in values.items():
            db.merge(models.AppSetting(site_id=site_id, key=key, value=value))

    return get_company_settings(db, site_id=site_id)
