"""
tests/test_users_routes.py -- Integration tests for the admin-only /api/v1/users routes.

Coverage:
  - require_roles(admin): 401 without a token, 403 for non-admin roles
  - GET /users lists public fields only
  - PATCH /users/{id}: role / active changes, empty patch, unknown user
  - Guards: no self-deactivation, never zero active admins
  - create-admin CLI is idempotent and enforces the password policy
"""

from __future__ import annotations

import pytest
from conftest import STRONG_PASSWORD, bearer, login_token, register, unique_email

import main as cli


@pytest.fixture(scope="module")
def admin(api_client) -> tuple[str, int]:
    """The only admin in this module's database: (token, user_id)."""
    client, _ = api_client
    email = unique_email("admin")
    user, created = client.app.state.auth.create_admin("Lab Admin", email, STRONG_PASSWORD)
    assert created
    return login_token(client, email), user.id


def test_users_requires_token(api_client):
    client, _ = api_client
    resp = client.get("/api/v1/users")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "missing_credentials"


@pytest.mark.parametrize("role", ["staff", "viewer"])
def test_users_forbidden_for_non_admin(api_client, role):
    client, _ = api_client
    token = register(client, unique_email(role), role=role)["token"]
    resp = client.get("/api/v1/users", headers=bearer(token))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"


def test_admin_lists_users_without_secrets(api_client, admin):
    client, _ = api_client
    token, admin_id = admin
    resp = client.get("/api/v1/users", headers=bearer(token))
    assert resp.status_code == 200
    users = resp.json()
    assert admin_id in [u["id"] for u in users]
    for u in users:
        assert set(u) == {"id", "name", "email", "role", "isActive", "mfaEnabled"}


def test_admin_changes_role_and_active_flag(api_client, admin):
    client, _ = api_client
    token, _ = admin
    email = unique_email("managed")
    uid = register(client, email)["user"]["id"]

    resp = client.patch(f"/api/v1/users/{uid}", json={"role": "viewer", "isActive": False}, headers=bearer(token))
    assert resp.status_code == 200
    assert resp.json()["role"] == "viewer"
    assert resp.json()["isActive"] is False

    login = client.post("/api/v1/auth/login", json={"email": email, "password": STRONG_PASSWORD})
    assert login.json()["error"]["code"] == "account_disabled"


def test_patch_validation(api_client, admin):
    client, _ = api_client
    token, _ = admin
    assert client.patch("/api/v1/users/1", json={}, headers=bearer(token)).status_code == 400
    assert client.patch("/api/v1/users/1", json={"role": "root"}, headers=bearer(token)).status_code == 400
    missing = client.patch("/api/v1/users/999999", json={"name": "Ghost"}, headers=bearer(token))
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


def test_admin_cannot_deactivate_self(api_client, admin):
    client, _ = api_client
    token, admin_id = admin
    resp = client.patch(f"/api/v1/users/{admin_id}", json={"isActive": False}, headers=bearer(token))
    assert resp.status_code == 403


def test_last_active_admin_is_protected(api_client, admin):
    client, _ = api_client
    token, admin_id = admin

    demote_self = client.patch(f"/api/v1/users/{admin_id}", json={"role": "staff"}, headers=bearer(token))
    assert demote_self.status_code == 403

    other = register(client, unique_email("second-admin"))["user"]["id"]
    promoted = client.patch(f"/api/v1/users/{other}", json={"role": "admin"}, headers=bearer(token))
    assert promoted.json()["role"] == "admin"

    demoted = client.patch(f"/api/v1/users/{other}", json={"role": "staff"}, headers=bearer(token))
    assert demoted.status_code == 200
    assert demoted.json()["role"] == "staff"


# ---------------------------------------------------------------------------
# create-admin CLI
# ---------------------------------------------------------------------------


def test_create_admin_cli(monkeypatch, tmp_path, capsys):
    from core.config import get_settings

    monkeypatch.setattr(get_settings(), "database_url", f"sqlite:///{tmp_path / 'cli.db'}")

    assert cli.main(["create-admin", "ops@example.com", STRONG_PASSWORD, "--name", "Ops"]) == 0
    assert "created" in capsys.readouterr().out

    assert cli.main(["create-admin", "OPS@example.com", STRONG_PASSWORD]) == 0
    assert "already exists" in capsys.readouterr().out

    assert cli.main(["create-admin", "weak@example.com", "weak"]) == 1
    assert "length" in capsys.readouterr().out
