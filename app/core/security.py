from __future__ import annotations

import os
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models.auth import User
from app.db.models.common import as_utc
from app.db.models.iam_tokens import RefreshToken, RevokedJTI
from app.db.models.organizations import PlatformAdmin

log = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_TTL_MIN = int(os.getenv("JWT_TTL_MIN", "30"))  # 30m default

IAM_ISSUER = os.getenv("IAM_ISSUER", "unity-iam")
IAM_AUDIENCE = os.getenv("IAM_AUDIENCE", "unity-platform")
REFRESH_TTL_DAYS = int(os.getenv("REFRESH_TTL_DAYS", "14"))

MIN_PASSWORD_LENGTH = 8


@dataclass
class Principal:
    user_id: str | None = None
    email: str = "anonymous"
    # org_id claim from the token; membership is checked separately
    org_id: str | None = None
    jti: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = Principal()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _make_jti() -> str:
    return secrets.token_urlsafe(16)


def create_access_token(user: User, org_id: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "iss": IAM_ISSUER,
        "aud": IAM_AUDIENCE,
        "jti": _make_jti(),
        "sub": user.id,
        "email": user.email,
        "org_id": org_id or user.default_org_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=JWT_TTL_MIN)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def _hash_refresh_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def mint_refresh_token(
    db: Session,
    user_id: str,
    org_id: str | None = None,
    created_ip: str | None = None,
    user_agent: str | None = None,
) -> str:
    """Create and persist a refresh token; return the raw token string."""
    raw = secrets.token_urlsafe(48)
    now = datetime.now(timezone.utc)
    db.add(
        RefreshToken(
            user_id=user_id,
            org_id=org_id,
            token_hash=_hash_refresh_token(raw),
            expires_at=now + timedelta(days=REFRESH_TTL_DAYS),
            revoked_at=None,
            created_ip=created_ip,
            user_agent=user_agent,
        )
    )
    db.commit()
    return raw


def rotate_refresh_token(
    db: Session,
    raw_refresh_token: str,
    created_ip: str | None = None,
    user_agent: str | None = None,
) -> tuple[str, str | None, str]:
    """Validate refresh token, revoke it, and mint a new one.

    Returns (user_id, org_id, new_raw_refresh_token).
    """
    token_hash = _hash_refresh_token(raw_refresh_token)
    rt = db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).first()
    now = datetime.now(timezone.utc)
    if not rt or rt.revoked_at is not None or as_utc(rt.expires_at) <= now:
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token")

    rt.revoked_at = now
    db.add(rt)
    db.commit()

    new_raw = mint_refresh_token(
        db,
        user_id=rt.user_id,
        org_id=rt.org_id,
        created_ip=created_ip,
        user_agent=user_agent,
    )
    return rt.user_id, rt.org_id, new_raw


def revoke_refresh_token(db: Session, raw_refresh_token: str) -> None:
    token_hash = _hash_refresh_token(raw_refresh_token)
    rt = db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).first()
    if not rt or rt.revoked_at is not None:
        return
    rt.revoked_at = datetime.now(timezone.utc)
    db.add(rt)
    db.commit()


def revoke_user_refresh_tokens(db: Session, user_id: str) -> int:
    """Revoke every live refresh token of a user. Returns how many were revoked."""
    now = datetime.now(timezone.utc)
    live = (
        db.query(RefreshToken)
        .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .all()
    )
    for rt in live:
        rt.revoked_at = now
    db.commit()
    return len(live)


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> Principal:
    if not creds or not creds.credentials:
        return ANONYMOUS

    try:
        payload = jwt.decode(
            creds.credentials,
            JWT_SECRET,
            algorithms=[JWT_ALG],
            audience=IAM_AUDIENCE,
            issuer=IAM_ISSUER,
        )
    except JWTError:
        return ANONYMOUS

    jti = payload.get("jti")
    if jti:
        revoked = db.query(RevokedJTI).filter(RevokedJTI.jti == jti, RevokedJTI.is_active == True).first()  # noqa: E712
        if revoked:
            return ANONYMOUS

    user_id = payload.get("sub")
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        return ANONYMOUS
    org_id = payload.get("org_id")
    return Principal(
        user_id=user.id,
        email=user.email,
        org_id=org_id if isinstance(org_id, str) else None,
        jti=jti,
    )


def require_user(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_authenticated:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return principal


def get_platform_role(db: Session, user_id: str | None) -> str | None:
    if not user_id:
        return None
    row = (
        db.query(PlatformAdmin)
        .filter(PlatformAdmin.user_id == user_id, PlatformAdmin.is_active == True)  # noqa: E712
        .first()
    )
    return row.platform_role if row else None


def is_platform_admin(db: Session, user_id: str | None) -> bool:
    return get_platform_role(db, user_id) is not None


def require_platform_admin(roles: Iterable[str] | None = None) -> Callable:
    """Dependency factory: caller must be an active platform admin (optionally with one of `roles`)."""
    allowed = set(roles or [])

    def _dep(principal: Principal = Depends(require_user), db: Session = Depends(get_db)) -> Principal:
        role = get_platform_role(db, principal.user_id)
        if role is None:
            log.info("platform admin required", extra={"actor": principal.email})
            raise HTTPException(status_code=403, detail="Platform admin access required")
        if allowed and role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"error": "missing_platform_role", "required": sorted(allowed), "role": role},
            )
        return principal

    return _dep
