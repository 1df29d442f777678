from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, DateTime, Boolean, JSON, Index, UniqueConstraint, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasUpdatedAt

__all__ = [
    "ModuleCatalog",
    "OrganizationModuleEntitlement",
    "ModuleEntitlementAudit",
    "BILLING_MODELS",
    "ENTITLEMENT_STATUSES",
    "ACTIVE_STATUSES",
]

BILLING_MODELS = ("manual", "subscription", "paid_in_full", "trial", "yearly_license")
ENTITLEMENT_STATUSES = ("active", "grace", "past_due", "canceled", "inactive")
# statuses that still grant access while enabled
ACTIVE_STATUSES = ("active", "grace")


class ModuleCatalog(Base, HasCreatedAt, HasUpdatedAt):
    """Module catalog (what exists in the packaged build)."""
    __tablename__ = "module_catalog"

    module_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    module_name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    dependency_keys: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_core: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)


class OrganizationModuleEntitlement(Base, HasId, HasCreatedAt, HasUpdatedAt):
    """Per-organization module entitlement state."""
    __tablename__ = "organization_module_entitlements"

    org_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    module_key: Mapped[str] = mapped_column(String(64), ForeignKey("module_catalog.module_key", ondelete="CASCADE"), nullable=False, index=True)

    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    billing_model: Mapped[str] = mapped_column(String(32), default="manual", nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="active", nullable=False, index=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    source: Mapped[str] = mapped_column(String(64), default="admin", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        UniqueConstraint("org_id", "module_key", name="uq_org_module_entitlement"),
    )


class ModuleEntitlementAudit(Base, HasId, HasCreatedAt):
    """Before/after trail for every entitlement change."""
    __tablename__ = "module_entitlement_audit"

    org_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    module_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    enabled_before: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    enabled_after: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    billing_model_before: Mapped[str | None] = mapped_column(String(32), nullable=True)
    billing_model_after: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status_before: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status_after: Mapped[str | None] = mapped_column(String(32), nullable=True)
    starts_at_before: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    starts_at_after: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at_before: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at_after: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    changed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    change_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

Index("ix_module_entitlement_audit_created_at", ModuleEntitlementAudit.created_at)
