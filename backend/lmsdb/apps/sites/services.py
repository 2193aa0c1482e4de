from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from lmsdb import errors
from lmsdb.database import (
    ADMIN_SITE_ID,
    ADMIN_SITE_NAME,
    EXTERNAL_SITE_ID,
    EXTERNAL_SITE_NAME,
    TenantStoreRegistry,
    atomic,
    stores,
)
from . import models

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_BRANCH_NAME_LENGTH = 3


@dataclass(frozen=True)
class SiteInfo:
    id: str
    name: str
    is_core: bool = False


CORE_SITES = (
    SiteInfo(id=ADMIN_SITE_ID, name=ADMIN_SITE_NAME, is_core=True),
    SiteInfo(id=EXTERNAL_SITE_ID, name=EXTERNAL_SITE_NAME, is_core=True),
)
CORE_SITE_IDS = frozenset(site.id for site in CORE_SITES)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def slugify(text: str) -> str:
    """
    Lowercase, trim, turn whitespace and underscores into '-', drop anything
    outside [a-z0-9-], and collapse repeated dashes.

    Store names are derived from the slug with '-' mapped to '_', so a slug
    must never contain '_' itself.
    """
    value = (text or "").strip().lower()
    value = re.sub(r"[\s_]+", "-", value)
    value = re.sub(r"[^a-z0-9\-]+", "", value)
    value = re.sub(r"-{2,}", "-", value)
    return value.strip("-")


def is_core_site(site_id: str) -> bool:
    return site_id in CORE_SITE_IDS


def _validate_name(name: str) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < MIN_BRANCH_NAME_LENGTH:
        raise errors.ValidationError(
            f"Branch name must be at least {MIN_BRANCH_NAME_LENGTH} characters."
        )
    return cleaned


def _ensure_mutable(site_id: str) -> None:
    if is_core_site(site_id):
        raise errors.PermissionDeniedError("Core branches cannot be modified or deleted.")


# ---------------------------------------------------------------------------
# Directory queries
# ---------------------------------------------------------------------------


def list_sites(admin_db: Session) -> List[SiteInfo]:
    """Core sites first (fixed order), then admin-created branches by name."""
    custom = (
        admin_db.query(models.CustomSite)
        .order_by(models.CustomSite.name.asc())
        .all()
    )
    return list(CORE_SITES) + [SiteInfo(id=row.id, name=row.name) for row in custom]


def get_site(admin_db: Session, site_id: Optional[str]) -> Optional[SiteInfo]:
    if not site_id:
        return None
    for site in CORE_SITES:
        if site.id == site_id:
            return site
    row = admin_db.get(models.CustomSite, site_id)
    if row is None:
        return None
    return SiteInfo(id=row.id, name=row.name)


def site_exists(admin_db: Session, site_id: Optional[str]) -> bool:
    return get_site(admin_db, site_id) is not None


def require_site(admin_db: Session, site_id: Optional[str]) -> SiteInfo:
    site = get_site(admin_db, site_id)
    if site is None:
        raise errors.NotFoundError("Branch not found.")
    return site


def _name_taken(admin_db: Session, name: str, *, exclude_id: Optional[str] = None) -> bool:
    key = name.lower()
    if any(site.name.lower() == key for site in CORE_SITES if site.id != exclude_id):
        return True
    query = admin_db.query(models.CustomSite.id).filter(
        func.lower(models.CustomSite.name) == key
    )
    if exclude_id:
        query = query.filter(models.CustomSite.id != exclude_id)
    return query.first() is not None


# ---------------------------------------------------------------------------
# Branch management
# ---------------------------------------------------------------------------


def create_site(
    admin_db: Session,
    *,
    name: str,
    registry: TenantStoreRegistry = stores,
) -> SiteInfo:
    """
    Register a new branch in the catalog and provision its store.

    The id is the slug of the name and never changes afterwards, even when the
    branch is renamed.
    """
    name = _validate_name(name)
    site_id = slugify(name)
    if not site_id:
        raise errors.ValidationError("Could not generate a valid ID from the branch name.")

    if site_exists(admin_db, site_id) or _name_taken(admin_db, name):
        raise errors.ConflictError("A branch with this name or a similar ID already exists.")

    with atomic(admin_db, operation="create_site", site_id=site_id):
        admin_db.add(models.CustomSite(id=site_id, name=name))

    registry.engine(site_id)
    logger.info("Branch created", extra={"site_id": site_id})
    return SiteInfo(id=site_id, name=name)


def rename_site(admin_db: Session, site_id: str, *, name: str) -> SiteInfo:
    _ensure_mutable(site_id)
    name = _validate_name(name)

    row = admin_db.get(models.CustomSite, site_id)
    if row is None:
        raise errors.NotFoundError("Branch not found.")
    if _name_taken(admin_db, name, exclude_id=site_id):
        raise errors.ConflictError("A branch with this name already exists.")

    with atomic(admin_db, operation="rename_site", site_id=site_id):
        row.name = name

    logger.info("Branch renamed", extra={"site_id": site_id})
    return SiteInfo(id=row.id, name=row.name)


def delete_site(
    admin_db: Session,
    site_id: str,
    *,
    registry: TenantStoreRegistry = stores,
) -> None:
    """
    Remove the catalog row, then the branch's physical store.

    The catalog row is authoritative: once it is gone the branch no longer
    exists, so a failure while dropping the store is only logged.
    """
    _ensure_mutable(site_id)

    row = admin_db.get(models.CustomSite, site_id)
    if row is None:
        raise errors.NotFoundError("Branch not found or already deleted.")

    with atomic(admin_db, operation="delete_site", site_id=site_id):
        admin_db.delete(row)

    try:
        registry.drop(site_id)
    except Exception:
        logger.warning(
            "Branch deleted but its store could not be removed",
            extra={"site_id": site_id},
            exc_info=True,
        )

    logger.info("Branch deleted", extra={"site_id": site_id})
