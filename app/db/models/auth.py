from __future__ import annotations

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

__all__ = ["User"]


class User(Base, HasId, HasCreatedAt):
    __tablename__ = "auth_user"

    email: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # preferred org, copied into the access token as the org_id claim
    default_org_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
