# backend/lmsdb/security.py

"""
Security helpers for the LMS.

Responsibilities:
- Password hashing and verification
- Signed session tokens carried in the `session_id` cookie
- Session/identity resolution across tenant stores
- FastAPI dependencies for authenticated / admin / super-admin routes

Every request resolves its session exactly once through
`get_session_context`, which returns an immutable `SessionContext`.
"""

from __future__ import annotations

import logging
import os
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, Optional

from fastapi import Cookie, Depends, HTTPException, Response, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, VerificationError, InvalidHash
import bcrypt

from .database import ADMIN_SITE_ID, TenantStoreRegistry, stores
from lmsdb.apps.accounts.models import User, UserRole, UserType
from lmsdb.apps.sites import services as site_services

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

# In production, ALWAYS override these via environment variables.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

try:
    SESSION_MAX_AGE_SECONDS: int = int(
        os.getenv("SESSION_MAX_AGE_SECONDS", str(60 * 60 * 24 * 7))
    )
except ValueError:
    SESSION_MAX_AGE_SECONDS = 60 * 60 * 24 * 7

SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() in {
    "1",
    "true",
    "yes",
    "on",
}

SESSION_COOKIE = "session_id"
SITE_COOKIE = "site_id"


# ---------------------------------------------------------------------------
# PASSWORD HASHING
# ---------------------------------------------------------------------------

# Argon2id (argon2-cffi) password hasher.
_pwd_hasher = PasswordHasher(
    time_cost=int(os.getenv("ARGON2_TIME_COST", "3")),
    memory_cost=int(os.getenv("ARGON2_MEMORY_COST", "65536")),  # KiB (64MB)
    parallelism=int(os.getenv("ARGON2_PARALLELISM", "2")),
    hash_len=int(os.getenv("ARGON2_HASH_LEN", "32")),
    salt_len=int(os.getenv("ARGON2_SALT_LEN", "16")),
)


def _is_argon2_hash(hashed_password: str) -> bool:
    return isinstance(hashed_password, str) and hashed_password.startswith("$argon2")


def _is_bcrypt_hash(hashed_password: str) -> bool:
    return isinstance(hashed_password, str) and hashed_password.startswith(("$2a$", "$2b$", "$2y$"))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return True if the plain password matches the hash."""
    if not plain_password or not hashed_password:
        return False

    if _is_argon2_hash(hashed_password):
        try:
            return _pwd_hasher.verify(hashed_password, plain_password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False

    # Accounts imported from the previous system carry bcrypt hashes.
    if _is_bcrypt_hash(hashed_password):
        try:
            return bcrypt.checkpw(
                plain_password.encode("utf-8"),
                hashed_password.encode("utf-8"),
            )
        except ValueError:
            return False

    return False


def get_password_hash(password: str) -> str:
    """Hash a password for storing in the database (Argon2id)."""
    return _pwd_hasher.hash(password)


# ---------------------------------------------------------------------------
# SESSION TOKENS
# ---------------------------------------------------------------------------


def create_session_token(user_id: str, *, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a session token whose subject is the user id."""
    expire = datetime.utcnow() + (
        expires_delta
        if expires_delta is not None
        else timedelta(seconds=SESSION_MAX_AGE_SECONDS)
    )
    return jwt.encode(
        {"sub": str(user_id), "exp": expire},
        SECRET_KEY,
        algorithm=JWT_ALGORITHM,
    )


def decode_session_token(token: Optional[str]) -> Optional[str]:
    """Return the user id carried by a valid token, else None."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        return None
    return subject.strip()


# ---------------------------------------------------------------------------
# SESSION VALUE OBJECTS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionUser:
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

    @classmethod
    def from_model(cls, user: User) -> "SessionUser":
        return cls(
            id=user.id,
            site_id=user.site_id,
            username=user.username,
            role=user.role,
            type=user.type,
            full_name=user.full_name,
            department=user.department,
            position=user.position,
            email=user.email,
            phone=user.phone,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_external(self) -> bool:
        return self.type == UserType.EXTERNAL


@dataclass(frozen=True)
class SessionContext:
    """
    Who is acting and in which tenant.

    `site_id` is the tenant the request is scoped to. For a super admin this
    may differ from `user.site_id`, which is always the administrative tenant.
    """

    user: Optional[SessionUser] = None
    site_id: Optional[str] = None
    is_super_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.site_id is not None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.is_admin


ANONYMOUS = SessionContext()


# ---------------------------------------------------------------------------
# SESSION RESOLUTION
# ---------------------------------------------------------------------------


def _find_active_user(db: Session, user_id: str, *, admin_only: bool = False) -> Optional[User]:
    query = db.query(User).filter(User.id == user_id, User.is_active.is_(True))
    if admin_only:
        query = query.filter(User.role == UserRole.ADMIN)
    return query.first()


def resolve_session(
    session_token: Optional[str],
    site_token: Optional[str],
    *,
    registry: TenantStoreRegistry = stores,
) -> SessionContext:
    """
    Resolve the acting user from the two session cookies.

    1. Missing or invalid tokens, or an unknown site -> anonymous.
    2. User found in the claimed site -> that user; super admin only when
       the claimed site is the administrative one and the role is Admin.
    3. Otherwise an Admin of the administrative site with the same id enters
       the claimed site as super admin.

    Any storage error fails closed (anonymous).
    """
    user_id = decode_session_token(session_token)
    site_id = (site_token or "").strip()
    if user_id is None or not site_id:
        return ANONYMOUS

    try:
        with closing(registry.open(ADMIN_SITE_ID)) as admin_db:
            if not site_services.site_exists(admin_db, site_id):
                return ANONYMOUS

            if site_id == ADMIN_SITE_ID:
                user = _find_active_user(admin_db, user_id)
                if user is None:
                    return ANONYMOUS
                return SessionContext(
                    user=SessionUser.from_model(user),
                    site_id=site_id,
                    is_super_admin=user.is_admin,
                )

            with closing(registry.open(site_id)) as tenant_db:
                user = _find_active_user(tenant_db, user_id)
                if user is not None:
                    return SessionContext(
                        user=SessionUser.from_model(user),
                        site_id=site_id,
                        is_super_admin=False,
                    )

            admin = _find_active_user(admin_db, user_id, admin_only=True)
            if admin is not None:
                return SessionContext(
                    user=SessionUser.from_model(admin),
                    site_id=site_id,
                    is_super_admin=True,
                )
    except Exception:
        logger.exception(
            "Session resolution failed; treating request as anonymous",
            extra={"site_id": site_id},
        )
        return ANONYMOUS

    return ANONYMOUS


# ---------------------------------------------------------------------------
# COOKIES
# ---------------------------------------------------------------------------


def set_site_cookie(response: Response, site_id: str) -> None:
    response.set_cookie(
        SITE_COOKIE,
        site_id,
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def set_session_cookies(response: Response, *, user_id: str, site_id: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        create_session_token(user_id),
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )
    set_site_cookie(response, site_id)


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(SITE_COOKIE, path="/")


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def get_session_context(
    session_cookie: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    site_cookie: Optional[str] = Cookie(default=None, alias=SITE_COOKIE),
) -> SessionContext:
    # Aliased: `site_id` is also a path or query parameter on some routes.
    return resolve_session(session_cookie, site_cookie)


def require_session(
    ctx: SessionContext = Depends(get_session_context),
) -> SessionContext:
    if not ctx.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return ctx


def require_admin(
    ctx: SessionContext = Depends(require_session),
) -> SessionContext:
    """Admins of the current site, and super admins acting in it."""
    if not (ctx.is_admin or ctx.is_super_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient privileges",
        )
    return ctx


def require_super_admin(
    ctx: SessionContext = Depends(require_session),
) -> SessionContext:
    if not ctx.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized: Super Admin access required",
        )
    return ctx


def get_tenant_db(
    ctx: SessionContext = Depends(require_session),
) -> Iterator[Session]:
    """Session bound to the store of the tenant the request is scoped to."""
    db = stores.open(ctx.site_id)
    try:
        yield db
    finally:
        db.close()
