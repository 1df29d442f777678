from __future__ import annotations
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from app.core.org_context import normalize_uuid
from app.core.tenant import set_org_id

class OrgContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        set_org_id(normalize_uuid(request.headers.get("X-Org-Id")))
        return await call_next(request)
