from __future__ import annotations

import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.org_context import (
    MEMBERSHIP_QUERY_FAILED,
    REQUESTED_ORG_NOT_ACTIVE,
    resolve_user_org_context,
)
from app.core.security import Principal, get_principal, is_platform_admin
from app.db.models.organizations import OrganizationMember
from app.db.models.system_modules import ACTIVE_STATUSES, ModuleCatalog, OrganizationModuleEntitlement
from app.db.session import get_db
from services.entitlements.catalog import is_known_module_key, normalize_module_key

MODULE_ACCESS_CACHE_TTL_SECONDS = float(os.getenv("MODULE_ACCESS_CACHE_TTL_SECONDS", "30"))
MODULE_ACCESS_CACHE_MAX = 1500

# reason values
ENABLED = "enabled"
PLATFORM_ADMIN_BYPASS = "platform_admin_bypass"
ORG_CONTEXT_UNAVAILABLE = "org_context_unavailable"
ORG_NOT_MEMBER = "org_not_member"
MISSING_ORG_CONTEXT = "missing_org_context"
NOT_ENTITLED = "not_entitled"
INVALID_ORG_CONTEXT = "invalid_org_context"


@dataclass(frozen=True)
class ModuleAccessEvaluation:
    module_key: str
    org_id: str | None
    is_platform_admin: bool
    allowed: bool
    reason: str

    def as_dict(self) -> dict:
        return {
            "module_key": self.module_key,
            "org_id": self.org_id,
            "is_platform_admin": self.is_platform_admin,
            "allowed": self.allowed,
            "reason": self.reason,
        }


_cache: dict[str, tuple[float, ModuleAccessEvaluation]] = {}


def clear_module_access_cache() -> None:
    _cache.clear()


def _read_cache(key: str) -> ModuleAccessEvaluation | None:
    entry = _cache.get(key)
    if entry is None:
        return None
    expires_at, value = entry
    if expires_at <= time.monotonic():
        _cache.pop(key, None)
        return None
    return value


def _write_cache(key: str, value: ModuleAccessEvaluation) -> None:
    now = time.monotonic()
    _cache[key] = (now + MODULE_ACCESS_CACHE_TTL_SECONDS, value)
    if len(_cache) > MODULE_ACCESS_CACHE_MAX:
        for k in [k for k, (exp, _) in _cache.items() if exp <= now]:
            _cache.pop(k, None)


def has_module_access(db: Session, user_id: str, org_id: str, module_key: str, now: datetime | None = None) -> bool:
    """Entitlement is enabled, active/grace, inside its date window, and the caller is an active member."""
    now = now or datetime.now(timezone.utc)
    row = (
        db.query(OrganizationModuleEntitlement.id)
        .join(
            OrganizationMember,
            (OrganizationMember.org_id == OrganizationModuleEntitlement.org_id)
            & (OrganizationMember.user_id == user_id),
        )
        .filter(
            OrganizationModuleEntitlement.org_id == org_id,
            OrganizationModuleEntitlement.module_key == module_key,
            OrganizationModuleEntitlement.enabled == True,  # noqa: E712
            OrganizationModuleEntitlement.status.in_(ACTIVE_STATUSES),
            or_(OrganizationModuleEntitlement.starts_at.is_(None), OrganizationModuleEntitlement.starts_at <= now),
            or_(OrganizationModuleEntitlement.ends_at.is_(None), OrganizationModuleEntitlement.ends_at > now),
            OrganizationMember.is_active == True,  # noqa: E712
            or_(OrganizationMember.banned_until.is_(None), OrganizationMember.banned_until > now),
        )
        .first()
    )
    return row is not None


def evaluate_module_access(
    db: Session,
    principal: Principal,
    module_key: str,
    *,
    request: Request | None = None,
    preferred_org_id: str | None = None,
    allow_platform_bypass: bool = True,
    bypass_cache: bool = False,
    cache_key_override: str | None = None,
) -> ModuleAccessEvaluation:
    key = normalize_module_key(module_key)
    if not key or not is_known_module_key(key):
        raise HTTPException(400, "Unknown module key")
    if not principal.is_authenticated:
        raise HTTPException(401, "Not authenticated")

    try:
        configured = db.get(ModuleCatalog, key)
    except SQLAlchemyError:
        raise HTTPException(500, "Failed to resolve module catalog")
    if configured is None:
        raise HTTPException(404, f'Module "{key}" is not configured')

    platform_admin = is_platform_admin(db, principal.user_id)

    ctx = resolve_user_org_context(
        db,
        principal.user_id,
        request=request,
        jwt_org_id=principal.org_id,
        preferred_org_id=preferred_org_id,
    )

    def _denied(reason: str) -> ModuleAccessEvaluation:
        return ModuleAccessEvaluation(key, None, platform_admin, False, reason)

    if ctx.error_code == MEMBERSHIP_QUERY_FAILED:
        return _denied(ORG_CONTEXT_UNAVAILABLE)
    if ctx.error_code == REQUESTED_ORG_NOT_ACTIVE:
        return _denied(ORG_NOT_MEMBER)
    if ctx.error and ctx.source != "none":
        return _denied(INVALID_ORG_CONTEXT)

    use_cache = not bypass_cache
    cache_key = cache_key_override or "|".join(
        (
            principal.user_id,
            key,
            ctx.org_id or "none",
            "platform" if platform_admin else "member",
            "bypass" if allow_platform_bypass else "strict",
        )
    )
    if use_cache:
        cached = _read_cache(cache_key)
        if cached is not None:
            return cached

    if platform_admin and allow_platform_bypass:
        value = ModuleAccessEvaluation(key, ctx.org_id, True, True, PLATFORM_ADMIN_BYPASS)
    elif not ctx.org_id:
        value = ModuleAccessEvaluation(key, None, platform_admin, False, MISSING_ORG_CONTEXT)
    else:
        try:
            allowed = has_module_access(db, principal.user_id, ctx.org_id, key)
        except SQLAlchemyError:
            raise HTTPException(500, "Failed to evaluate module access")
        value = ModuleAccessEvaluation(key, ctx.org_id, platform_admin, allowed, ENABLED if allowed else NOT_ENTITLED)

    if use_cache:
        _write_cache(cache_key, value)
    return value


class ModuleAccessDenied(Exception):
    def __init__(self, evaluation: ModuleAccessEvaluation, message: str | None = None) -> None:
        super().__init__(message)
        self.evaluation = evaluation
        self.message = message or f'Module "{evaluation.module_key}" is not enabled for your organization'

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=403,
            content={
                "error": self.message,
                "reason": self.evaluation.reason,
                "module_key": self.evaluation.module_key,
                "org_id": self.evaluation.org_id,
            },
        )


def require_module_access(module_key: str, *, allow_platform_bypass: bool = True, forbidden_message: str | None = None):
    """Route dependency: 403 unless the caller's organization is entitled to `module_key`."""

    def _dep(
        request: Request,
        db: Session = Depends(get_db),
        principal: Principal = Depends(get_principal),
    ) -> ModuleAccessEvaluation:
        evaluation = evaluate_module_access(
            db,
            principal,
            module_key,
            request=request,
            allow_platform_bypass=allow_platform_bypass,
        )
        if not evaluation.allowed:
            raise ModuleAccessDenied(evaluation, forbidden_message)
        return evaluation

    return _dep
