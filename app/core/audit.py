from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from app.db.models.security_audit import AuditLog
from app.core.tenant import get_org_id

log = logging.getLogger(__name__)


def audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    payload: dict | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    status_code: int | None = None,
    success: bool = True,
    org_id: str | None = None,
    commit: bool = True,
) -> None:
    """Write an append-only audit record.

    Keep payload JSON-serializable. With commit=False the row joins the
    caller's transaction.
    """
    safe_payload: dict[str, Any] = payload or {}
    try:
        safe_payload = json.loads(json.dumps(safe_payload, default=str))
    except (TypeError, ValueError):
        safe_payload = {"_payload_error": "non_json", "_payload_repr": repr(payload)}

    db.add(
        AuditLog(
            org_id=org_id or get_org_id(),
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            request_id=request_id,
            ip_address=ip_address,
            user_agent=user_agent,
            status_code=status_code,
            success=success,
            payload=safe_payload,
        )
    )
    if commit:
        db.commit()
    log.debug("audit %s %s/%s", action, entity_type, entity_id, extra={"actor": actor})
