from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.org_context import resolve_user_org_context
from app.core.security import Principal, require_user
from app.db.session import get_db
from services.admin.module_guard import evaluate_module_access
from services.entitlements.service import list_org_entitlements
from services.entitlements.dependency_graph import EntitlementGraph, is_active_entitlement

router = APIRouter(prefix="/me", tags=["me"])


@router.get("/module-access/{module_key}")
def module_access(
    module_key: str,
    request: Request,
    org_id: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_user),
):
    evaluation = evaluate_module_access(db, principal, module_key, request=request, preferred_org_id=org_id)
    return evaluation.as_dict()


@router.get("/modules")
def my_modules(request: Request, db: Session = Depends(get_db), principal: Principal = Depends(require_user)):
    """Module keys currently usable by the caller's organization."""
    ctx = resolve_user_org_context(db, principal.user_id, request=request, jwt_org_id=principal.org_id)
    if not ctx.org_id:
        return {"org_id": None, "modules": [], "error": ctx.error_code}
    graph = EntitlementGraph(list_org_entitlements(db, ctx.org_id), counts_as_enabled=is_active_entitlement)
    return {"org_id": ctx.org_id, "modules": sorted(graph.enabled_keys), "error": None}
