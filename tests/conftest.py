"""
Test Fixtures
=============

Every test runs against a throwaway SQLite file. DATABASE_URL must be set
before any app module is imported, so it happens at the top of this file.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="unity-entitlements-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token, hash_password
from app.db.base import Base
from app.db.models.auth import User
from app.db.models.organizations import Organization, OrganizationMember, PlatformAdmin
from app.db.models.system_modules import OrganizationModuleEntitlement
from app.db.session import SessionLocal, engine
from services.admin.module_guard import clear_module_access_cache
from services.entitlements.catalog import ensure_catalog, seed_org_entitlements

PASSWORD = "correct-horse-battery"
_PASSWORD_HASH = None


def _password_hash() -> str:
    # bcrypt is slow; hash the shared test password once per session
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(PASSWORD)
    return _PASSWORD_HASH


# ============================================
# DATABASE
# ============================================

@pytest.fixture(autouse=True)
def _schema():
    """Fresh schema and empty access cache for every test."""
    Base.metadata.create_all(bind=engine)
    clear_module_access_cache()
    yield
    clear_module_access_cache()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    ensure_catalog(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    from main import app

    return TestClient(app)


# ============================================
# FACTORIES
# ============================================

@pytest.fixture
def make_user(db):
    def _make(email="user@example.com", *, platform_role=None, default_org_id=None, is_active=True):
        user = User(
            email=email,
            full_name=email.split("@")[0],
            password_hash=_password_hash(),
            default_org_id=default_org_id,
            is_active=is_active,
        )
        db.add(user)
        db.flush()
        if platform_role:
            db.add(PlatformAdmin(user_id=user.id, platform_role=platform_role))
        db.commit()
        return user

    return _make


@pytest.fixture
def make_org(db):
    def _make(name="Acme Joinery", *, seed=True):
        org = Organization(name=name)
        db.add(org)
        db.commit()
        if seed:
            seed_org_entitlements(db, org.id)
        return org

    return _make


@pytest.fixture
def add_member(db):
    def _add(org, user, *, role="staff", is_active=True, banned_until=None):
        member = OrganizationMember(
            org_id=org.id,
            user_id=user.id,
            role=role,
            is_active=is_active,
            banned_until=banned_until,
        )
        db.add(member)
        db.commit()
        return member

    return _add


@pytest.fixture
def set_entitlement(db):
    """Force one entitlement row into a given state, bypassing the gate."""

    def _set(org, module_key, **fields):
        row = (
            db.query(OrganizationModuleEntitlement)
            .filter(
                OrganizationModuleEntitlement.org_id == org.id,
                OrganizationModuleEntitlement.module_key == module_key,
            )
            .first()
        )
        if row is None:
            row = OrganizationModuleEntitlement(org_id=org.id, module_key=module_key)
            db.add(row)
        for name, value in fields.items():
            setattr(row, name, value)
        db.commit()
        return row

    return _set


@pytest.fixture
def auth_headers():
    def _headers(user, org_id=None, **extra):
        headers = {"Authorization": f"Bearer {create_access_token(user, org_id=org_id)}"}
        headers.update(extra)
        return headers

    return _headers


@pytest.fixture
def platform_owner(make_user):
    return make_user("owner@unity.example.com", platform_role="platform_owner")
