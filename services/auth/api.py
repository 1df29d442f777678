from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.org_context import is_membership_active, normalize_uuid
from app.core.security import (
    Principal,
    create_access_token,
    get_platform_role,
    hash_password,
    mint_refresh_token,
    require_user,
    revoke_refresh_token,
    rotate_refresh_token,
    validate_password,
    verify_password,
)
from app.db.models.auth import User
from app.db.models.organizations import OrganizationMember, PlatformAdmin
from app.db.session import get_db

router = APIRouter(prefix="/auth", tags=["auth"])


class BootstrapIn(BaseModel):
    email: EmailStr
    password: str
    full_name: str | None = ""


class LoginIn(BaseModel):
    email: EmailStr
    password: str
    org_id: str | None = None


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"


class RefreshIn(BaseModel):
    refresh_token: str


class LogoutIn(BaseModel):
    refresh_token: str


def _issue_tokens(db: Session, user: User, request: Request, org_id: str | None = None) -> TokenOut:
    org_id = org_id or user.default_org_id
    access = create_access_token(user, org_id=org_id)
    refresh = mint_refresh_token(
        db,
        user.id,
        org_id=org_id,
        created_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    return TokenOut(access_token=access, refresh_token=refresh)


@router.post("/bootstrap", response_model=TokenOut)
def bootstrap(payload: BootstrapIn, request: Request, db: Session = Depends(get_db)):
    # Fresh install only: the very first user becomes platform owner.
    if db.query(User).count() > 0:
        raise HTTPException(status_code=409, detail="Already bootstrapped")
    validate_password(payload.password)

    user = User(email=payload.email, full_name=payload.full_name or "", password_hash=hash_password(payload.password))
    db.add(user)
    db.flush()
    db.add(PlatformAdmin(user_id=user.id, platform_role="platform_owner", notes="bootstrap"))
    db.commit()

    audit(db, actor=user.email, action="platform_bootstrap", entity_type="user", entity_id=user.id)
    return _issue_tokens(db, user, request)


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User is inactive")
    return _issue_tokens(db, user, request, org_id=normalize_uuid(payload.org_id))


@router.post("/refresh", response_model=TokenOut)
def refresh(payload: RefreshIn, request: Request, db: Session = Depends(get_db)):
    user_id, org_id, new_refresh = rotate_refresh_token(
        db,
        payload.refresh_token,
        created_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token")
    return TokenOut(access_token=create_access_token(user, org_id=org_id), refresh_token=new_refresh)


@router.post("/logout")
def logout(payload: LogoutIn, db: Session = Depends(get_db)):
    revoke_refresh_token(db, payload.refresh_token)
    return {"ok": True}


@router.get("/me")
def me(principal: Principal = Depends(require_user), db: Session = Depends(get_db)):
    memberships = db.query(OrganizationMember).filter(OrganizationMember.user_id == principal.user_id).all()
    return {
        "user_id": principal.user_id,
        "email": principal.email,
        "org_id": principal.org_id,
        "platform_role": get_platform_role(db, principal.user_id),
        "memberships": [
            {"org_id": m.org_id, "role": m.role, "active": is_membership_active(m)}
            for m in memberships
        ],
    }
