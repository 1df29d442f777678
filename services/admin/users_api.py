from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.org_context import normalize_uuid
from app.core.security import (
    Principal,
    hash_password,
    require_platform_admin,
    revoke_user_refresh_tokens,
    validate_password,
)
from app.db.models.auth import User
from app.db.models.organizations import PLATFORM_ROLES, Organization, OrganizationMember, PlatformAdmin
from app.db.session import get_db
from services._crud import commit_refresh, get_or_404

router = APIRouter(prefix="/admin", tags=["admin_users"])

platform_admin = require_platform_admin()
platform_owner = require_platform_admin(["platform_owner"])


class CreateUserIn(BaseModel):
    email: EmailStr
    password: str
    full_name: str | None = ""
    org_id: str | None = None
    role: str | None = "staff"


class ResetPasswordIn(BaseModel):
    new_password: str


class MembershipIn(BaseModel):
    user_id: str
    role: str | None = "staff"
    is_active: bool = True


class PlatformAdminIn(BaseModel):
    user_id: str
    platform_role: str = "platform_support"
    notes: str | None = None


def _add_membership(db: Session, org_id: str, user_id: str, role: str | None, is_active: bool = True) -> OrganizationMember:
    org_id = get_or_404(db, Organization, normalize_uuid(org_id), "Organization").id
    member = (
        db.query(OrganizationMember)
        .filter(OrganizationMember.org_id == org_id, OrganizationMember.user_id == user_id)
        .first()
    )
    if member:
        member.role = role
        member.is_active = is_active
    else:
        member = OrganizationMember(org_id=org_id, user_id=user_id, role=role, is_active=is_active)
    return commit_refresh(db, member)


@router.post("/users", status_code=201)
def create_user(payload: CreateUserIn, db: Session = Depends(get_db), principal: Principal = Depends(platform_admin)):
    validate_password(payload.password)
    if db.query(User).filter(User.email == payload.email).first():
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        email=payload.email,
        full_name=payload.full_name or "",
        password_hash=hash_password(payload.password),
        default_org_id=normalize_uuid(payload.org_id),
    )
    db.add(user)
    db.flush()
    if payload.org_id:
        _add_membership(db, payload.org_id, user.id, payload.role)
    else:
        db.commit()

    audit(
        db,
        actor=principal.email,
        action="platform_user_create",
        entity_type="user",
        entity_id=user.id,
        org_id=user.default_org_id,
        payload={"email": user.email, "org_id": user.default_org_id, "role": payload.role},
    )
    return {"id": user.id, "email": user.email, "org_id": user.default_org_id}


@router.post("/users/{user_id}/reset-password")
def reset_password(user_id: str, payload: ResetPasswordIn, db: Session = Depends(get_db), principal: Principal = Depends(platform_admin)):
    user = get_or_404(db, User, user_id, "User")
    validate_password(payload.new_password)

    user.password_hash = hash_password(payload.new_password)
    db.commit()
    revoked = revoke_user_refresh_tokens(db, user.id)

    audit(
        db,
        actor=principal.email,
        action="platform_user_password_reset",
        entity_type="user",
        entity_id=user.id,
        payload={"revoked_sessions": revoked},
    )
    return {"ok": True, "user_id": user.id, "revoked_sessions": revoked}


@router.post("/orgs/{org_id}/members", status_code=201)
def add_member(org_id: str, payload: MembershipIn, db: Session = Depends(get_db), principal: Principal = Depends(platform_admin)):
    get_or_404(db, User, payload.user_id, "User")
    member = _add_membership(db, org_id, payload.user_id, payload.role, payload.is_active)
    return {"org_id": member.org_id, "user_id": member.user_id, "role": member.role, "is_active": member.is_active}


@router.post("/platform-admins", status_code=201)
def grant_platform_admin(payload: PlatformAdminIn, db: Session = Depends(get_db), principal: Principal = Depends(platform_owner)):
    if payload.platform_role not in PLATFORM_ROLES:
        raise HTTPException(400, "Invalid platform_role")
    get_or_404(db, User, payload.user_id, "User")

    row = db.get(PlatformAdmin, payload.user_id)
    if row:
        row.platform_role = payload.platform_role
        row.is_active = True
        row.notes = payload.notes
    else:
        row = PlatformAdmin(user_id=payload.user_id, platform_role=payload.platform_role, notes=payload.notes)
    commit_refresh(db, row)

    audit(
        db,
        actor=principal.email,
        action="platform_admin_grant",
        entity_type="platform_admin",
        entity_id=row.user_id,
        payload={"platform_role": row.platform_role},
    )
    return {"user_id": row.user_id, "platform_role": row.platform_role, "is_active": row.is_active}
