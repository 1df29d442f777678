"""
Tests for login, token rotation, bootstrap and the admin user routes.
"""

import pytest

from app.db.models.organizations import OrganizationMember, PlatformAdmin

PASSWORD = "correct-horse-battery"  # password set by the make_user factory


def login(client, email, password=PASSWORD, **extra):
    return client.post("/auth/login", json={"email": email, "password": password, **extra})


class TestBootstrap:
    def test_first_user_becomes_platform_owner(self, client, db):
        resp = client.post("/auth/bootstrap", json={"email": "first@example.com", "password": "s3cret-pass"})
        assert resp.status_code == 200
        assert resp.json()["access_token"]
        row = db.query(PlatformAdmin).one()
        assert row.platform_role == "platform_owner"

    def test_second_bootstrap_rejected(self, client, platform_owner):
        resp = client.post("/auth/bootstrap", json={"email": "late@example.com", "password": "s3cret-pass"})
        assert resp.status_code == 409

    def test_short_password_rejected(self, client):
        resp = client.post("/auth/bootstrap", json={"email": "first@example.com", "password": "short"})
        assert resp.status_code == 400


class TestLogin:
    def test_login_and_me(self, client, make_user, make_org, add_member):
        org = make_org()
        user = make_user("maker@acme.example.com")
        add_member(org, user, role="manager")

        tokens = login(client, "maker@acme.example.com", org_id=org.id).json()
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"}).json()
        assert me["email"] == "maker@acme.example.com"
        assert me["org_id"] == org.id
        assert me["platform_role"] is None
        assert me["memberships"] == [{"org_id": org.id, "role": "manager", "active": True}]

    def test_wrong_password(self, client, make_user):
        make_user("maker@acme.example.com")
        assert login(client, "maker@acme.example.com", "not-the-password").status_code == 401

    def test_inactive_user(self, client, make_user):
        make_user("gone@acme.example.com", is_active=False)
        assert login(client, "gone@acme.example.com").status_code == 403

    def test_me_requires_token(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_garbage_token_is_anonymous(self, client):
        resp = client.get("/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401


class TestRefresh:
    def test_refresh_rotates_token(self, client, make_user):
        make_user("maker@acme.example.com")
        first = login(client, "maker@acme.example.com").json()

        resp = client.post("/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200
        assert resp.json()["refresh_token"] != first["refresh_token"]

        reused = client.post("/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert reused.status_code == 401

    def test_logout_revokes_refresh_token(self, client, make_user):
        make_user("maker@acme.example.com")
        tokens = login(client, "maker@acme.example.com").json()
        assert client.post("/auth/logout", json={"refresh_token": tokens["refresh_token"]}).json() == {"ok": True}
        assert client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401


@pytest.fixture
def owner_headers(platform_owner, auth_headers):
    return auth_headers(platform_owner)


class TestAdminUsers:
    def test_create_user_with_membership(self, client, db, make_org, owner_headers):
        org = make_org()
        resp = client.post(
            "/admin/users",
            json={"email": "new@acme.example.com", "password": "s3cret-pass", "org_id": org.id, "role": "manager"},
            headers=owner_headers,
        )
        assert resp.status_code == 201
        user_id = resp.json()["id"]
        member = db.query(OrganizationMember).filter_by(user_id=user_id).one()
        assert (member.org_id, member.role) == (org.id, "manager")
        assert login(client, "new@acme.example.com", "s3cret-pass").status_code == 200

    def test_duplicate_email(self, client, make_user, owner_headers):
        make_user("taken@acme.example.com")
        resp = client.post(
            "/admin/users", json={"email": "taken@acme.example.com", "password": "s3cret-pass"}, headers=owner_headers
        )
        assert resp.status_code == 409

    def test_non_admin_cannot_create_users(self, client, make_user, auth_headers):
        staff = make_user("staff@acme.example.com")
        resp = client.post(
            "/admin/users",
            json={"email": "new@acme.example.com", "password": "s3cret-pass"},
            headers=auth_headers(staff),
        )
        assert resp.status_code == 403

    def test_reset_password_revokes_sessions(self, client, make_user, owner_headers):
        user = make_user("maker@acme.example.com")
        tokens = login(client, "maker@acme.example.com").json()

        resp = client.post(
            f"/admin/users/{user.id}/reset-password", json={"new_password": "brand-new-pass"}, headers=owner_headers
        )
        assert resp.status_code == 200
        assert resp.json()["revoked_sessions"] == 1
        assert client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401
        assert login(client, "maker@acme.example.com").status_code == 401
        assert login(client, "maker@acme.example.com", "brand-new-pass").status_code == 200

    def test_reset_password_minimum_length(self, client, make_user, owner_headers):
        user = make_user("maker@acme.example.com")
        resp = client.post(f"/admin/users/{user.id}/reset-password", json={"new_password": "1234567"}, headers=owner_headers)
        assert resp.status_code == 400

    def test_add_member(self, client, make_org, make_user, owner_headers):
        org = make_org()
        user = make_user("maker@acme.example.com")
        resp = client.post(f"/admin/orgs/{org.id}/members", json={"user_id": user.id}, headers=owner_headers)
        assert resp.status_code == 201
        assert resp.json()["is_active"] is True


class TestPlatformAdmins:
    def test_owner_grants_role(self, client, db, make_user, owner_headers):
        user = make_user("ops@unity.example.com")
        resp = client.post(
            "/admin/platform-admins", json={"user_id": user.id, "platform_role": "platform_ops"}, headers=owner_headers
        )
        assert resp.status_code == 201
        assert db.get(PlatformAdmin, user.id).platform_role == "platform_ops"

    def test_support_cannot_grant(self, client, make_user, auth_headers):
        support = make_user("support@unity.example.com", platform_role="platform_support")
        target = make_user("target@unity.example.com")
        resp = client.post(
            "/admin/platform-admins", json={"user_id": target.id}, headers=auth_headers(support)
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "missing_platform_role"

    def test_unknown_role(self, client, make_user, owner_headers):
        user = make_user("ops@unity.example.com")
        resp = client.post(
            "/admin/platform-admins", json={"user_id": user.id, "platform_role": "superuser"}, headers=owner_headers
        )
        assert resp.status_code == 400
