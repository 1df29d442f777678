from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.security import Principal
from app.db.models.common import as_utc, utcnow
from app.db.models.organizations import Organization
from app.db.models.system_modules import (
    BILLING_MODELS,
    ENTITLEMENT_STATUSES,
    ModuleCatalog,
    ModuleEntitlementAudit,
    OrganizationModuleEntitlement,
)
from services.entitlements.dependency_graph import (
    EntitlementGraph,
    ModuleEntitlementRow,
    is_active_entitlement,
)

log = logging.getLogger(__name__)

DEFAULT_SOURCE = "platform-admin"
AUDITED_FIELDS = ("enabled", "billing_model", "status", "starts_at", "ends_at", "notes")


class EntitlementConflict(Exception):
    """The dependency gate rejected a toggle. Rendered as a top-level 409 body."""

    status_code = 409

    def __init__(
        self,
        message: str,
        module_key: str,
        missing_dependencies: list[str] | None = None,
        dependent_modules: list[dict] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.module_key = module_key
        self.missing_dependencies = missing_dependencies or []
        self.dependent_modules = dependent_modules or []

    def to_payload(self) -> dict:
        body: dict = {"error": self.message, "module_key": self.module_key}
        if self.missing_dependencies:
            body["missing_dependencies"] = self.missing_dependencies
        if self.dependent_modules:
            body["dependent_modules"] = self.dependent_modules
        return body


class EntitlementUpdateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: Any = None
    billing_model: str | None = None
    status: str | None = None
    starts_at: str | None = None
    ends_at: str | None = None
    notes: str | None = None
    source: str | None = None


def parse_date_or_null(value: str | datetime | None) -> datetime | None:
    """ISO-8601 text to an aware UTC datetime; blank or unparseable input gives None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    trimmed = value.strip()
    if not trimmed:
        return None
    try:
        parsed = datetime.fromisoformat(trimmed.replace("Z", "+00:00"))
    except ValueError:
        return None
    return as_utc(parsed)


def _row_view(mod: ModuleCatalog, ent: OrganizationModuleEntitlement | None) -> ModuleEntitlementRow:
    return ModuleEntitlementRow(
        module_key=mod.module_key,
        module_name=mod.module_name,
        description=mod.description,
        dependency_keys=mod.dependency_keys or [],
        is_core=bool(mod.is_core),
        enabled=bool(ent.enabled) if ent else False,
        billing_model=ent.billing_model if ent else "manual",
        status=ent.status if ent else "inactive",
        starts_at=as_utc(ent.starts_at) if ent else None,
        ends_at=as_utc(ent.ends_at) if ent else None,
        notes=ent.notes if ent else None,
    )


def list_org_entitlements(db: Session, org_id: str) -> list[ModuleEntitlementRow]:
    """Every catalog module for the org, in key order. Modules without a row read as disabled."""
    mods = db.query(ModuleCatalog).order_by(ModuleCatalog.module_key.asc()).all()
    rows = db.query(OrganizationModuleEntitlement).filter(OrganizationModuleEntitlement.org_id == org_id).all()
    by_key = {r.module_key: r for r in rows}
    return [_row_view(m, by_key.get(m.module_key)) for m in mods]


def serialize_entitlement(ent: OrganizationModuleEntitlement) -> dict:
    return {
        "org_id": ent.org_id,
        "module_key": ent.module_key,
        "enabled": ent.enabled,
        "billing_model": ent.billing_model,
        "status": ent.status,
        "starts_at": as_utc(ent.starts_at).isoformat() if ent.starts_at else None,
        "ends_at": as_utc(ent.ends_at).isoformat() if ent.ends_at else None,
        "notes": ent.notes,
        "source": ent.source,
        "updated_by": ent.updated_by,
        "updated_at": as_utc(ent.updated_at).isoformat() if ent.updated_at else None,
    }


def check_dependency_gate(db: Session, org_id: str, module: ModuleCatalog, enabled: bool) -> None:
    """Server-side gate: only entitlements that are enabled and active/grace count."""
    graph = EntitlementGraph(list_org_entitlements(db, org_id), counts_as_enabled=is_active_entitlement)
    target = graph.get(module.module_key)
    decision = graph.check_toggle(target, enabled)
    if decision.allowed:
        return
    if enabled:
        raise EntitlementConflict(
            f'Cannot enable "{module.module_key}" until dependencies are enabled',
            module.module_key,
            missing_dependencies=list(decision.missing_dependencies),
        )
    raise EntitlementConflict(
        f'Cannot disable "{module.module_key}" while dependent modules are enabled',
        module.module_key,
        dependent_modules=[{"module_key": m.module_key, "module_name": m.label} for m in decision.dependent_modules],
    )


def _snapshot(ent: OrganizationModuleEntitlement | None) -> dict:
    if ent is None:
        return {f: None for f in AUDITED_FIELDS}
    return {
        "enabled": ent.enabled,
        "billing_model": ent.billing_model,
        "status": ent.status,
        "starts_at": as_utc(ent.starts_at),
        "ends_at": as_utc(ent.ends_at),
        "notes": ent.notes,
    }


def _record_change(db: Session, ent: OrganizationModuleEntitlement, before: dict | None, actor_id: str | None) -> bool:
    after = _snapshot(ent)
    if before is not None and before == after:
        return False
    prior = before or _snapshot(None)
    if before is None:
        meta = {"source": ent.source, "notes": ent.notes}
    else:
        meta = {"source": ent.source, "notes_before": prior["notes"], "notes_after": ent.notes}
    db.add(
        ModuleEntitlementAudit(
            org_id=ent.org_id,
            module_key=ent.module_key,
            enabled_before=prior["enabled"],
            enabled_after=after["enabled"],
            billing_model_before=prior["billing_model"],
            billing_model_after=after["billing_model"],
            status_before=prior["status"],
            status_after=after["status"],
            starts_at_before=prior["starts_at"],
            starts_at_after=after["starts_at"],
            ends_at_before=prior["ends_at"],
            ends_at_after=after["ends_at"],
            changed_by=actor_id,
            change_reason="insert" if before is None else "update",
            meta=meta,
        )
    )
    return True


def _load_entitlement(db: Session, org_id: str, module_key: str) -> OrganizationModuleEntitlement | None:
    return (
        db.query(OrganizationModuleEntitlement)
        .filter(OrganizationModuleEntitlement.org_id == org_id, OrganizationModuleEntitlement.module_key == module_key)
        .first()
    )


def _apply_values(ent: OrganizationModuleEntitlement, values: dict) -> None:
    for field, value in values.items():
        setattr(ent, field, value)
    ent.updated_at = utcnow()


def update_entitlement(db: Session, org_id: str, module_key: str, body: dict | None, principal: Principal) -> dict:
    """Apply one entitlement change for one organization.

    Raises HTTPException for validation / lookup failures and EntitlementConflict
    when the dependency gate rejects the change.
    """
    if not isinstance(body, dict):
        raise HTTPException(400, "Invalid JSON body")
    try:
        payload = EntitlementUpdateIn.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(400, f"Invalid body: {exc.errors()[0]['loc']}")

    mod = db.get(ModuleCatalog, module_key)
    if not mod:
        raise HTTPException(404, f'Unknown module "{module_key}"')
    if not db.get(Organization, org_id):
        raise HTTPException(404, "Organization not found")

    current = _load_entitlement(db, org_id, module_key)

    # a non-boolean "enabled" is ignored, not rejected
    enabled = payload.enabled if isinstance(payload.enabled, bool) else (current.enabled if current else False)
    if payload.billing_model is not None:
        billing_model = payload.billing_model.strip()
    else:
        billing_model = (current.billing_model if current else None) or "manual"
    if payload.status is not None:
        status = payload.status.strip()
    else:
        status = (current.status if current else None) or "active"
    starts_at = parse_date_or_null(payload.starts_at if payload.starts_at is not None else (current.starts_at if current else None))
    ends_at = parse_date_or_null(payload.ends_at if payload.ends_at is not None else (current.ends_at if current else None))
    if payload.notes is None:
        notes = current.notes if current else None
    else:
        notes = payload.notes.strip() or None
    source = (payload.source or DEFAULT_SOURCE).strip() or DEFAULT_SOURCE

    if billing_model not in BILLING_MODELS:
        raise HTTPException(400, "Invalid billing_model")
    if status not in ENTITLEMENT_STATUSES:
        raise HTTPException(400, "Invalid status")
    if starts_at and ends_at and ends_at <= starts_at:
        raise HTTPException(400, "ends_at must be after starts_at")

    check_dependency_gate(db, org_id, mod, enabled)

    values = {
        "enabled": enabled,
        "billing_model": billing_model,
        "status": status,
        "starts_at": starts_at,
        "ends_at": ends_at,
        "notes": notes,
        "source": source,
        "updated_by": principal.user_id,
    }
    before = _snapshot(current) if current else None
    if current is None:
        current = OrganizationModuleEntitlement(org_id=org_id, module_key=module_key)
        db.add(current)
    _apply_values(current, values)
    try:
        db.flush()
    except IntegrityError:
        if before is not None:
            raise
        # another writer inserted the row first; last write wins
        db.rollback()
        current = _load_entitlement(db, org_id, module_key)
        if current is None:
            raise
        log.info("entitlement %s for org %s inserted concurrently, updating", module_key, org_id)
        before = _snapshot(current)
        _apply_values(current, values)
        db.flush()

    _record_change(db, current, before, principal.user_id)
    audit(
        db,
        actor=principal.email,
        action="platform_module_entitlement_update",
        entity_type="module_entitlement",
        entity_id=f"{org_id}:{module_key}",
        org_id=org_id,
        payload={
            "org_id": org_id,
            "module_key": module_key,
            "module_name": mod.module_name,
            "enabled": enabled,
            "billing_model": billing_model,
            "status": status,
            "starts_at": starts_at,
            "ends_at": ends_at,
        },
        commit=False,
    )
    db.commit()
    log.info(
        "entitlement %s %s for org %s",
        module_key,
        "enabled" if enabled else "disabled",
        org_id,
        extra={"org_id": org_id, "module_key": module_key, "actor": principal.email},
    )
    return serialize_entitlement(current)


def list_entitlement_audit(db: Session, org_id: str, limit: int = 100) -> list[dict]:
    rows = (
        db.query(ModuleEntitlementAudit)
        .filter(ModuleEntitlementAudit.org_id == org_id)
        .order_by(ModuleEntitlementAudit.created_at.desc())
        .limit(limit)
        .all()
    )

    def _iso(value: datetime | None) -> str | None:
        return as_utc(value).isoformat() if value else None

    return [
        {
            "id": r.id,
            "module_key": r.module_key,
            "enabled_before": r.enabled_before,
            "enabled_after": r.enabled_after,
            "billing_model_before": r.billing_model_before,
            "billing_model_after": r.billing_model_after,
            "status_before": r.status_before,
            "status_after": r.status_after,
            "starts_at_before": _iso(r.starts_at_before),
            "starts_at_after": _iso(r.starts_at_after),
            "ends_at_before": _iso(r.ends_at_before),
            "ends_at_after": _iso(r.ends_at_after),
            "changed_by": r.changed_by,
            "change_reason": r.change_reason,
            "metadata": r.meta or {},
            "created_at": _iso(r.created_at),
        }
        for r in rows
    ]
