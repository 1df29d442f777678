from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.core.tenant import get_org_id
from app.db.models.common import as_utc
from app.db.models.organizations import OrganizationMember

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

MEMBERSHIP_SCAN_LIMIT = 20

# errorCode values
REQUESTED_ORG_NOT_ACTIVE = "requested_org_not_active"
MEMBERSHIP_QUERY_FAILED = "membership_query_failed"
NO_ACTIVE_MEMBERSHIP = "no_active_membership"


@dataclass
class OrgContextResolution:
    org_id: str | None
    source: str  # preferred | query | header | jwt | membership | none
    role: str | None = None
    is_member: bool = False
    error: str | None = None
    error_code: str | None = None


def normalize_uuid(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed if UUID_RE.match(trimmed) else None


def is_membership_active(member: OrganizationMember, now: datetime | None = None) -> bool:
    if not member.is_active:
        return False
    if member.banned_until is None:
        return True
    now = now or datetime.now(timezone.utc)
    return as_utc(member.banned_until) > now


def _fetch_membership(db: Session, user_id: str, org_id: str) -> OrganizationMember | None:
    return (
        db.query(OrganizationMember)
        .filter(OrganizationMember.user_id == user_id, OrganizationMember.org_id == org_id)
        .first()
    )


def _first_active_membership(db: Session, user_id: str) -> OrganizationMember | None:
    rows = (
        db.query(OrganizationMember)
        .filter(OrganizationMember.user_id == user_id)
        .order_by(OrganizationMember.inserted_at.asc())
        .limit(MEMBERSHIP_SCAN_LIMIT)
        .all()
    )
    return next((m for m in rows if is_membership_active(m)), None)


def resolve_user_org_context(
    db: Session,
    user_id: str,
    *,
    request: Request | None = None,
    jwt_org_id: object = None,
    preferred_org_id: str | None = None,
) -> OrgContextResolution:
    """Pick the organization a request acts on.

    Explicit sources (preferred argument, ``?org_id=``, ``X-Org-Id``) must name an
    org the user is an active member of. The token's org claim is only a hint and
    falls back to the user's first active membership.
    """
    query_org = request.query_params.get("org_id") if request is not None else None
    header_org = request.headers.get("x-org-id") if request is not None else get_org_id()

    candidates = (
        (normalize_uuid(preferred_org_id), "preferred", True),
        (normalize_uuid(query_org), "query", True),
        (normalize_uuid(header_org), "header", True),
        (normalize_uuid(jwt_org_id), "jwt", False),
    )
    org_id, source, explicit = next(((o, s, e) for o, s, e in candidates if o), (None, "none", False))

    if org_id:
        try:
            membership = _fetch_membership(db, user_id, org_id)
        except SQLAlchemyError as exc:
            return OrgContextResolution(None, source, error=str(exc), error_code=MEMBERSHIP_QUERY_FAILED)

        if membership and is_membership_active(membership):
            return OrgContextResolution(membership.org_id, source, role=membership.role, is_member=True)

        if explicit:
            return OrgContextResolution(
                None,
                source,
                error="Requested organization is not active for this user",
                error_code=REQUESTED_ORG_NOT_ACTIVE,
            )

    try:
        first = _first_active_membership(db, user_id)
    except SQLAlchemyError as exc:
        return OrgContextResolution(None, "none", error=str(exc), error_code=MEMBERSHIP_QUERY_FAILED)

    if first is None:
        return OrgContextResolution(
            None,
            "none",
            error="No active organization membership found",
            error_code=NO_ACTIVE_MEMBERSHIP,
        )
    return OrgContextResolution(first.org_id, "membership", role=first.role, is_member=True)
