from __future__ import annotations

import json
import logging
import os
from functools import lru_cache

from sqlalchemy.orm import Session

from app.db.models.common import utcnow
from app.db.models.system_modules import ModuleCatalog, OrganizationModuleEntitlement

log = logging.getLogger(__name__)

MANIFEST_DIR = os.path.join(os.path.dirname(__file__), "..", "..", "app", "modules")

# Sellable add-on; new organizations start without it.
DEFAULT_DISABLED_MODULES = frozenset({"furniture_configurator"})


@lru_cache(maxsize=1)
def load_manifests() -> tuple[dict, ...]:
    out = []
    if not os.path.isdir(MANIFEST_DIR):
        return ()
    for fn in os.listdir(MANIFEST_DIR):
        if not fn.endswith(".manifest.json"):
            continue
        with open(os.path.join(MANIFEST_DIR, fn), "r", encoding="utf-8") as f:
            out.append(json.load(f))
    out.sort(key=lambda x: x.get("key", ""))
    return tuple(out)


def known_module_keys() -> frozenset[str]:
    return frozenset(m["key"] for m in load_manifests())


def normalize_module_key(module_key: str | None) -> str:
    return (module_key or "").strip().lower()


def is_known_module_key(module_key: str | None) -> bool:
    return normalize_module_key(module_key) in known_module_keys()


def ensure_catalog(db: Session) -> None:
    """Insert packaged modules into module_catalog, refreshing metadata of existing rows."""
    changed = 0
    for m in load_manifests():
        key = m["key"]
        mod = db.get(ModuleCatalog, key)
        if not mod:
            db.add(
                ModuleCatalog(
                    module_key=key,
                    module_name=m.get("name", key),
                    description=m.get("description"),
                    dependency_keys=list(m.get("depends_on", [])),
                    is_core=bool(m.get("core", False)),
                )
            )
            changed += 1
            continue
        deps = list(m.get("depends_on", mod.dependency_keys or []))
        if (mod.module_name, mod.description, mod.dependency_keys, mod.is_core) != (
            m.get("name", mod.module_name), m.get("description", mod.description), deps, bool(m.get("core", mod.is_core))
        ):
            mod.module_name = m.get("name", mod.module_name)
            mod.description = m.get("description", mod.description)
            mod.dependency_keys = deps
            mod.is_core = bool(m.get("core", mod.is_core))
            changed += 1
    if changed:
        log.info("module catalog synced (%d rows changed)", changed)
    db.commit()


def seed_org_entitlements(db: Session, org_id: str, *, source: str = "migration-seed") -> int:
    """Create default entitlement rows for an organization. Existing rows are left alone."""
    existing = {
        r.module_key
        for r in db.query(OrganizationModuleEntitlement).filter(OrganizationModuleEntitlement.org_id == org_id).all()
    }
    created = 0
    for mod in db.query(ModuleCatalog).order_by(ModuleCatalog.module_key.asc()).all():
        if mod.module_key in existing:
            continue
        db.add(
            OrganizationModuleEntitlement(
                org_id=org_id,
                module_key=mod.module_key,
                enabled=mod.module_key not in DEFAULT_DISABLED_MODULES,
                billing_model="manual",
                status="active",
                starts_at=utcnow(),
                source=source,
                notes="Initial seed row for new organization",
            )
        )
        created += 1
    db.commit()
    return created
