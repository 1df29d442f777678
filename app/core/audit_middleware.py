from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from sqlalchemy.exc import SQLAlchemyError

from app.core.org_context import normalize_uuid
from app.core.security import get_principal
from app.db.session import SessionLocal
from app.core.audit import audit

log = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    rid = request.headers.get("X-Request-Id") or request.headers.get("X-Request-ID")
    if rid:
        return rid[:64]
    return str(uuid.uuid4())


def _client_ip(request: Request) -> str | None:
    # If behind a proxy/load balancer, you can trust X-Forwarded-For (configure accordingly).
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _actor_for(request: Request) -> str:
    authz = request.headers.get("Authorization")
    if not authz or not authz.lower().startswith("bearer "):
        return "anonymous"

    class _Creds:
        credentials = authz.split(" ", 1)[1].strip()

    try:
        with SessionLocal() as db:
            principal = get_principal(_Creds(), db)  # type: ignore[arg-type]
    except SQLAlchemyError:
        log.warning("could not resolve audit actor for %s", request.url.path, exc_info=True)
        return "anonymous"
    return principal.email if principal.is_authenticated else "anonymous"


async def audit_http_middleware(request: Request, call_next: Callable) -> Response:
    """Governance-grade audit middleware.

    - Adds a correlation id (X-Request-Id)
    - Records auth traffic, authorization failures and entitlement conflicts
    """
    request_id = _get_request_id(request)
    start = time.perf_counter()
    org_id = normalize_uuid(request.headers.get("X-Org-Id"))

    try:
        response = await call_next(request)
    except Exception:
        duration_ms = int((time.perf_counter() - start) * 1000)
        log.exception("unhandled error on %s %s", request.method, request.url.path, extra={"request_id": request_id})
        with SessionLocal() as db:
            audit(
                db,
                actor="anonymous",
                action="http.exception",
                entity_type="http",
                entity_id=request.url.path[:128],
                payload={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                },
                request_id=request_id,
                ip_address=_client_ip(request),
                user_agent=request.headers.get("User-Agent"),
                status_code=500,
                success=False,
                org_id=org_id,
            )
        raise

    response.headers["X-Request-Id"] = request_id

    status_code = response.status_code
    duration_ms = int((time.perf_counter() - start) * 1000)

    should_log = request.url.path.startswith("/auth") or status_code in (401, 403, 409)
    if should_log:
        actor = _actor_for(request)
        with SessionLocal() as db:
            audit(
                db,
                actor=actor,
                action="http.request",
                entity_type="http",
                entity_id=request.url.path[:128],
                payload={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
                request_id=request_id,
                ip_address=_client_ip(request),
                user_agent=(request.headers.get("User-Agent") or "")[:256] or None,
                status_code=status_code,
                success=200 <= status_code < 400,
                org_id=org_id,
            )

    return response
