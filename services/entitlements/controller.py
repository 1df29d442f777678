from __future__ import annotations

import logging
from dataclasses import dataclass, field

from services.entitlements.client import EntitlementsApiError, EntitlementsClient
from services.entitlements.dependency_graph import EntitlementGraph, ModuleEntitlementRow, ToggleDecision

log = logging.getLogger(__name__)

UI_SOURCE = "admin-modules-ui"


@dataclass
class ControllerState:
    organizations: list[dict] = field(default_factory=list)
    selected_org_id: str | None = None
    rows: list[ModuleEntitlementRow] = field(default_factory=list)
    error: str | None = None
    updating_key: str | None = None
    notices: list[str] = field(default_factory=list)

    @property
    def selected_org_name(self) -> str:
        org = next((o for o in self.organizations if o.get("id") == self.selected_org_id), None)
        return (org or {}).get("name") or "organization"


class ModuleEntitlementsController:
    """Drives the per-organization module switchboard over `EntitlementsClient`.

    The dependency graph is rebuilt from the latest fetched rows on every call;
    the server gate has the final word on each toggle.
    """

    def __init__(self, client: EntitlementsClient) -> None:
        self.client = client
        self.state = ControllerState()

    async def load_organizations(self) -> list[dict]:
        self.state.error = None
        try:
            self.state.organizations = await self.client.list_organizations()
        except EntitlementsApiError as exc:
            self.state.error = exc.message or "Failed to load organizations"
            return self.state.organizations
        if not self.state.selected_org_id and self.state.organizations:
            await self.select_organization(self.state.organizations[0]["id"])
        return self.state.organizations

    async def select_organization(self, org_id: str) -> list[ModuleEntitlementRow]:
        self.state.selected_org_id = org_id
        return await self.refresh()

    async def refresh(self) -> list[ModuleEntitlementRow]:
        org_id = self.state.selected_org_id
        if not org_id:
            return []
        self.state.error = None
        try:
            self.state.rows = await self.client.list_entitlements(org_id)
        except EntitlementsApiError as exc:
            self.state.error = exc.message or "Failed to load module entitlements"
            self.state.rows = []
        return self.state.rows

    def snapshot(self) -> EntitlementGraph:
        return EntitlementGraph(self.state.rows)

    def _row(self, module_key: str) -> ModuleEntitlementRow:
        row = next((r for r in self.state.rows if r.module_key == module_key), None)
        if row is None:
            raise KeyError(module_key)
        return row

    def blocked_reason(self, module_key: str) -> str | None:
        return self.snapshot().blocked_reason(self._row(module_key))

    async def toggle(self, module_key: str, enabled: bool) -> ToggleDecision:
        org_id = self.state.selected_org_id
        row = self._row(module_key)
        decision = self.snapshot().check_toggle(row, enabled)
        self.state.error = None
        if not decision.allowed:
            self.state.error = decision.reason
            return decision
        if not org_id:
            return decision

        status = "active" if enabled else "inactive"
        self.state.updating_key = module_key
        try:
            await self.client.update_entitlement(
                org_id,
                module_key,
                {
                    "enabled": enabled,
                    "billing_model": row.billing_model,
                    "status": status,
                    "notes": row.notes,
                    "source": UI_SOURCE,
                },
            )
        except EntitlementsApiError as exc:
            self.state.error = exc.message or "Failed to update module"
            log.info("toggle %s rejected: %s", module_key, self.state.error)
            return ToggleDecision(False, module_key, enabled)
        finally:
            self.state.updating_key = None

        self.state.rows = [
            r.model_copy(update={"enabled": enabled, "status": status}) if r.module_key == module_key else r
            for r in self.state.rows
        ]
        self.state.notices.append(
            f"{row.label} {'enabled' if enabled else 'disabled'} for {self.state.selected_org_name}"
        )
        await self.refresh()
        return decision
