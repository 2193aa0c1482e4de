from __future__ import annotations

import os
import sys
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from functools import partial
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

_DATA_DIR = tempfile.mkdtemp(prefix="lmsdb-tests-")
os.environ["DATABASE_URL_TEMPLATE"] = f"sqlite+pysqlite:///{_DATA_DIR}/lms_{{site_id}}.sqlite"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ARGON2_TIME_COST"] = "1"
os.environ["ARGON2_MEMORY_COST"] = "1024"
os.environ["ARGON2_PARALLELISM"] = "1"
os.environ.pop("PAYMONGO_SECRET_KEY", None)
os.environ.pop("AI_RECOMMENDER_URL", None)

from lmsdb.database import (  # noqa: E402
    ADMIN_SITE_ID,
    TenantStoreRegistry,
    create_schema,
    create_store_engine,
)
from lmsdb.security import SessionContext, SessionUser  # noqa: E402
from lmsdb.apps.accounts.models import User, UserRole, UserType  # noqa: E402
from lmsdb.apps.courses import schemas as course_schemas  # noqa: E402
from lmsdb.apps.courses import services as course_services  # noqa: E402
from lmsdb.apps.courses.models import Signatory  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_store_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def registry(tmp_path):
    """File-backed SQLite stores, one per site, under a per-test directory."""
    reg = TenantStoreRegistry(f"sqlite+pysqlite:///{tmp_path}/lms_{{site_id}}.sqlite")
    try:
        yield reg
    finally:
        reg.dispose_all()


@pytest.fixture()
def locking_registry(tmp_path):
    """
    Like `registry`, but every transaction opens with BEGIN IMMEDIATE so
    concurrent writers queue on the store lock.
    """
    reg = TenantStoreRegistry(
        f"sqlite+pysqlite:///{tmp_path}/lms_{{site_id}}.sqlite",
        engine_factory=partial(create_store_engine, sqlite_begin="BEGIN IMMEDIATE"),
    )
    try:
        yield reg
    finally:
        reg.dispose_all()


@pytest.fixture()
def run_concurrently():
    """Start every callable on its own thread at the same moment; return results in order."""

    def _run(*calls):
        barrier = threading.Barrier(len(calls))

        def _start(call):
            barrier.wait(timeout=10)
            return call()

        with ThreadPoolExecutor(max_workers=len(calls)) as pool:
            futures = [pool.submit(_start, call) for call in calls]
            return [future.result(timeout=60) for future in futures]

    return _run


@pytest.fixture()
def make_user():
    def _make(
        db,
        *,
        site_id: str = ADMIN_SITE_ID,
        username: str = "learner",
        role: UserRole = UserRole.EMPLOYEE,
        type: UserType = UserType.EMPLOYEE,
        full_name: str = "Test Learner",
        is_active: bool = True,
    ) -> User:
        user = User(
            site_id=site_id,
            username=username,
            username_key=username.lower(),
            hashed_password="not-a-real-hash",
            full_name=full_name,
            role=role,
            type=type,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture()
def make_signatory():
    def _make(db, *, site_id: str = ADMIN_SITE_ID, name: str = "Jane Cruz") -> Signatory:
        signatory = Signatory(
            site_id=site_id,
            name=name,
            position="Training Manager",
            signature_image_path=f"/uploads/signatures/{name.lower().replace(' ', '-')}.png",
        )
        db.add(signatory)
        db.commit()
        return signatory

    return _make


@pytest.fixture()
def make_course():
    def _make(
        db,
        *,
        site_id: str = ADMIN_SITE_ID,
        title: str = "Fire Safety",
        lessons=("Introduction", "Extinguishers"),
        modules=None,
        is_internal: bool = True,
        is_public: bool = False,
        price=None,
        pre_test=None,
        final_assessment=None,
        passing_rate=None,
        max_attempts: int = 3,
        signatory_ids=(),
    ):
        if modules is None:
            lesson_items = [
                item if isinstance(item, course_schemas.LessonIn) else course_schemas.LessonIn(title=item)
                for item in lessons
            ]
            modules = [course_schemas.ModuleIn(title="Module 1", lessons=lesson_items)] if lesson_items else []
        data = course_schemas.CourseIn(
            title=title,
            is_internal=is_internal,
            is_public=is_public,
            price=Decimal(str(price)) if price is not None else None,
            pre_test=pre_test,
            final_assessment=final_assessment,
            passing_rate=passing_rate,
            max_attempts=max_attempts,
            modules=modules,
            signatory_ids=list(signatory_ids),
        )
        return course_services.create_course(db, site_id=site_id, data=data)

    return _make


@pytest.fixture()
def context_for():
    def _ctx(user: User, *, site_id=None, is_super_admin: bool = False) -> SessionContext:
        return SessionContext(
            user=SessionUser.from_model(user),
            site_id=site_id or user.site_id,
            is_super_admin=is_super_admin,
        )

    return _ctx
