from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.org_context import normalize_uuid
from app.core.security import Principal, require_platform_admin
from app.db.models.organizations import Organization
from app.db.session import get_db
from services._crud import commit_refresh, get_or_404
from services.entitlements.catalog import (
    ensure_catalog,
    is_known_module_key,
    normalize_module_key,
    seed_org_entitlements,
)
from services.entitlements.dependency_graph import find_dependency_cycles, unknown_dependencies
from services.entitlements.service import (
    list_entitlement_audit,
    list_org_entitlements,
    update_entitlement,
)

router = APIRouter(prefix="/admin/orgs", tags=["admin_modules"])

platform_admin = require_platform_admin()


class OrganizationIn(BaseModel):
    name: str
    seed_entitlements: bool = True


def _org_id_or_400(org_id: str) -> str:
    normalized = normalize_uuid(org_id)
    if not normalized:
        raise HTTPException(400, "Invalid orgId")
    return normalized


def _get_org(db: Session, org_id: str) -> Organization:
    return get_or_404(db, Organization, _org_id_or_400(org_id), "Organization")


@router.get("")
def list_organizations(db: Session = Depends(get_db), principal: Principal = Depends(platform_admin)):
    orgs = db.query(Organization).order_by(Organization.name.asc()).all()
    return {"organizations": [{"id": o.id, "name": o.name} for o in orgs]}


@router.post("", status_code=201)
def create_organization(payload: OrganizationIn, db: Session = Depends(get_db), principal: Principal = Depends(platform_admin)):
    name = payload.name.strip()
    if not name:
        raise HTTPException(400, "name required")
    org = commit_refresh(db, Organization(name=name))
    seeded = 0
    if payload.seed_entitlements:
        ensure_catalog(db)
        seeded = seed_org_entitlements(db, org.id)
    audit(
        db,
        actor=principal.email,
        action="platform_organization_create",
        entity_type="organization",
        entity_id=org.id,
        org_id=org.id,
        payload={"name": name, "seeded_entitlements": seeded},
    )
    return {"id": org.id, "name": org.name, "seeded_entitlements": seeded}


@router.get("/{org_id}/modules")
def list_modules(org_id: str, db: Session = Depends(get_db), principal: Principal = Depends(platform_admin)):
    org = _get_org(db, org_id)
    ensure_catalog(db)
    rows = list_org_entitlements(db, org.id)
    warnings = [
        {"type": "dependency_cycle", "modules": cycle} for cycle in find_dependency_cycles(rows)
    ] + [
        {"type": "unknown_dependency", "module_key": key, "missing": missing}
        for key, missing in unknown_dependencies(rows).items()
    ]
    return {
        "organization": {"id": org.id, "name": org.name},
        "entitlements": [r.model_dump(mode="json") for r in rows],
        "warnings": warnings,
    }


@router.get("/{org_id}/modules/audit")
def module_audit(org_id: str, limit: int = 100, db: Session = Depends(get_db), principal: Principal = Depends(platform_admin)):
    org = _get_org(db, org_id)
    return {"audit": list_entitlement_audit(db, org.id, limit=max(1, min(limit, 500)))}


@router.put("/{org_id}/modules/{module_key}")
def put_module_entitlement(
    org_id: str,
    module_key: str,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(platform_admin),
):
    normalized_org = _org_id_or_400(org_id)
    key = normalize_module_key(module_key)
    if not key or not is_known_module_key(key):
        raise HTTPException(400, "Invalid moduleKey")

    ensure_catalog(db)
    entitlement = update_entitlement(db, normalized_org, key, payload, principal)
    return {"success": True, "entitlement": entitlement}
