from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, DateTime, Boolean, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasUpdatedAt, utcnow

__all__ = ["Organization", "OrganizationMember", "PlatformAdmin", "PLATFORM_ROLES"]

PLATFORM_ROLES = ("platform_owner", "platform_ops", "platform_support")


class Organization(Base, HasId, HasCreatedAt):
    """A tenant. Module entitlements are scoped to one organization."""
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(256), nullable=False)

    members = relationship("OrganizationMember", back_populates="organization", cascade="all, delete-orphan")


class OrganizationMember(Base, HasId):
    __tablename__ = "organization_members"

    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("auth_user.id", ondelete="CASCADE"), index=True, nullable=False)
    role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    banned_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    organization = relationship("Organization", back_populates="members")

    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_org_member"),
    )

Index("ix_org_members_user_inserted", OrganizationMember.user_id, OrganizationMember.inserted_at)


class PlatformAdmin(Base, HasUpdatedAt):
    """Platform-level operators. Assigned manually, never derived from org roles."""
    __tablename__ = "platform_admins"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("auth_user.id", ondelete="CASCADE"), primary_key=True)
    platform_role: Mapped[str] = mapped_column(String(32), default="platform_owner", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    notes: Mapped[str | None] = mapped_column(String(512), nullable=True)
