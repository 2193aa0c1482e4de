"""
Ensure the administrative site holds a super admin account.

    SEED_SUPERADMIN_PASSWORD=... python -m lmsdb.scripts.seed_superuser

Running it again re-activates the account and restores the Admin role; the
password is only set when the account is created.
"""

import logging
import os
import sys
from contextlib import closing
from typing import Optional

from sqlalchemy.orm import Session

from lmsdb.database import ADMIN_SITE_ID, TenantStoreRegistry, stores
from lmsdb.security import get_password_hash
from lmsdb.apps.accounts.models import User, UserRole, UserType

logger = logging.getLogger(__name__)

USERNAME = os.getenv("SEED_SUPERADMIN_USERNAME", "admin")
PASSWORD = os.getenv("SEED_SUPERADMIN_PASSWORD")
FULL_NAME = os.getenv("SEED_SUPERADMIN_FULL_NAME", "Super Admin")


def ensure_superuser(
    db: Session,
    *,
    username: str = USERNAME,
    password: Optional[str] = PASSWORD,
    full_name: str = FULL_NAME,
) -> User:
    key = username.strip().lower()
    existing = (
        db.query(User)
        .filter(User.site_id == ADMIN_SITE_ID, User.username_key == key)
        .first()
    )
    if existing:
        existing.role = UserRole.ADMIN
        existing.type = UserType.EMPLOYEE
        existing.is_active = True
        db.commit()
        return existing

    if not password:
        raise RuntimeError("SEED_SUPERADMIN_PASSWORD must be set to create the super admin.")

    user = User(
        site_id=ADMIN_SITE_ID,
        username=username.strip(),
        username_key=key,
        hashed_password=get_password_hash(password),
        full_name=full_name,
        role=UserRole.ADMIN,
        type=UserType.EMPLOYEE,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


def main(registry: TenantStoreRegistry = stores) -> None:
    logging.basicConfig(level=logging.INFO)
    with closing(registry.open(ADMIN_SITE_ID)) as db:
        try:
            user = ensure_superuser(db)
        except RuntimeError as exc:
            logger.error("%s", exc)
            sys.exit(1)
    logger.info("Super admin ready", extra={"site_id": ADMIN_SITE_ID, "user_id": user.id})
    print("OK:", user.username, "site =", ADMIN_SITE_ID)


if __name__ == "__main__":
    main()
