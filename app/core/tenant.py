from __future__ import annotations
import contextvars

# Org requested by the caller for this request (X-Org-Id header), not yet
# checked against memberships. See app.core.org_context for resolution.
_org: contextvars.ContextVar[str | None] = contextvars.ContextVar("org_id", default=None)

def set_org_id(org_id: str | None) -> None:
    _org.set(org_id or None)

def get_org_id() -> str | None:
    return _org.get()
