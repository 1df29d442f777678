from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.audit_middleware import audit_http_middleware
from app.core.logging_config import configure_logging
from app.core.middleware import OrgContextMiddleware
from app.db.session import SessionLocal

# Register models
from app.db import models  # noqa: F401

from services.admin.module_guard import ModuleAccessDenied
from services.admin.modules_api import router as modules_router
from services.admin.users_api import router as admin_users_router
from services.auth.api import router as auth_router
from services.entitlements.catalog import ensure_catalog
from services.entitlements.service import EntitlementConflict
from services.me.api import router as me_router

log = logging.getLogger(__name__)

app = FastAPI(title="Unity Platform: Module Entitlements")
app.add_middleware(OrgContextMiddleware)


@app.middleware("http")
async def _audit(request, call_next):
    return await audit_http_middleware(request, call_next)


@app.exception_handler(EntitlementConflict)
async def _entitlement_conflict(request: Request, exc: EntitlementConflict):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(ModuleAccessDenied)
async def _module_access_denied(request: Request, exc: ModuleAccessDenied):
    return exc.to_response()


app.include_router(auth_router)
app.include_router(me_router)
app.include_router(modules_router)
app.include_router(admin_users_router)


@app.on_event("startup")
async def _startup():
    configure_logging()
    # Schema is owned by Alembic; only the packaged module catalog is synced here.
    with SessionLocal() as db:
        ensure_catalog(db)
    log.info("module catalog ready")


@app.get("/health")
def health():
    return {"ok": True}
