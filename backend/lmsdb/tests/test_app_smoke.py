from __future__ import annotations

import uuid
from contextlib import closing

import pytest
from fastapi.testclient import TestClient

from lmsdb.database import ADMIN_SITE_ID, stores
from lmsdb.main import app
from lmsdb.scripts.seed_superuser import ensure_superuser


@pytest.fixture()
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def super_admin(client):
    username = f"root-{uuid.uuid4().hex[:8]}"
    with closing(stores.open(ADMIN_SITE_ID)) as db:
        ensure_superuser(db, username=username, password="root-pass")
    login = client.post("/auth/login", json={"username": username, "password": "root-pass"})
    assert login.status_code == 200
    return client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_reserved_sites_are_listed(client):
    ids = [site["id"] for site in client.get("/sites").json()]
    assert ids[:2] == ["main", "external"]


def test_optional_integrations_start_disabled(client):
    assert app.state.payment_gateway is None
    assert app.state.recommender is None


def test_external_learner_session_roundtrip(client):
    username = f"buyer-{uuid.uuid4().hex[:8]}"

    signup = client.post("/auth/signup", json={"username": username, "password": "buyer-pass"})
    assert signup.status_code == 201
    assert signup.json()["type"] == "External"

    login = client.post(
        "/auth/login",
        json={"username": username, "password": "buyer-pass", "site_id": "external"},
    )
    assert login.status_code == 200
    assert login.json()["site_id"] == "external"

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["username"] == username
    assert me.json()["is_super_admin"] is False

    assert client.get("/profile/payments").json() == []
    assert client.get("/profile/enrollment-status").json() == {"user_course_ids": []}
    assert client.get("/dashboard").json()["stats"] == {"courses_completed": 0, "skills_acquired": 0}
    assert client.get("/admin/payments").status_code == 403
    assert client.get("/admin/analytics").status_code == 403

    checkout = client.post("/courses/CRS-any/checkout")
    assert checkout.status_code == 500
    assert checkout.json()["detail"] == "Payment gateway is not configured on the server."

    client.post("/auth/logout")
    client.cookies.clear()
    assert client.get("/auth/me").status_code == 401


def test_branch_lifecycle(super_admin):
    client = super_admin
    name = f"Branch {uuid.uuid4().hex[:8]}"

    created = client.post("/admin/branches", json={"name": name})
    assert created.status_code == 201
    branch_id = created.json()["id"]
    assert branch_id == name.lower().replace(" ", "-")

    renamed = client.put(f"/admin/branches/{branch_id}", json={"name": f"{name} City"})
    assert renamed.status_code == 200
    assert renamed.json() == {"id": branch_id, "name": f"{name} City", "is_core": False}

    assert client.put("/admin/branches/main", json={"name": "Elsewhere"}).status_code == 403

    assert client.delete(f"/admin/branches/{branch_id}").status_code == 204
    assert branch_id not in [site["id"] for site in client.get("/sites").json()]
    assert client.delete(f"/admin/branches/{branch_id}").status_code == 404


def test_anonymous_requests_are_rejected(client):
    assert client.get("/courses").status_code == 401
    assert client.get("/admin/branches").status_code == 401
