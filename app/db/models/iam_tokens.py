from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, DateTime, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt

__all__ = ["RefreshToken", "RevokedJTI"]


class RefreshToken(Base, HasId, HasCreatedAt):
    """Persisted refresh tokens.

    Access tokens are short-lived JWTs. Refresh tokens live server-side so an
    admin password reset can revoke every session a user holds.
    """

    __tablename__ = "auth_refresh_token"

    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    org_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    token_hash: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)


Index("ix_refresh_token_user_revoked", RefreshToken.user_id, RefreshToken.revoked_at)


class RevokedJTI(Base, HasId, HasCreatedAt):
    """Access-token revocation list (by JWT ID)."""

    __tablename__ = "auth_revoked_jti"

    jti: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    revoked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
