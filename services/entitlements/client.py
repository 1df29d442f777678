"""Async HTTP client for the platform-admin entitlement routes."""
from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from services.entitlements.dependency_graph import ModuleEntitlementRow

log = logging.getLogger(__name__)

ENTITLEMENTS_API_URL = os.getenv("ENTITLEMENTS_API_URL", "http://localhost:8000")


class EntitlementsApiError(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


class EntitlementConflictError(EntitlementsApiError):
    """409 from the dependency gate."""

    def __init__(
        self,
        message: str,
        module_key: str | None = None,
        missing_dependencies: list[str] | None = None,
        dependent_modules: list[dict] | None = None,
    ) -> None:
        super().__init__(409, message)
        self.module_key = module_key
        self.missing_dependencies = missing_dependencies or []
        self.dependent_modules = dependent_modules or []

    @classmethod
    def from_body(cls, body: dict) -> "EntitlementConflictError":
        missing = [str(k) for k in body.get("missing_dependencies") or []]
        dependents = list(body.get("dependent_modules") or [])
        if missing:
            message = f"Enable dependencies first: {', '.join(missing)}"
        elif dependents:
            names = [d.get("module_name") or d.get("module_key") for d in dependents]
            message = f"Disable dependent modules first: {', '.join(names)}"
        else:
            message = body.get("error") or "Entitlement update rejected"
        return cls(message, body.get("module_key"), missing, dependents)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        detail = body.get("error") or body.get("detail")
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    return f"HTTP {response.status_code}"


class EntitlementsClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url or ENTITLEMENTS_API_URL, headers=headers)

    async def __aenter__(self) -> "EntitlementsClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        response = await self._client.request(method, url, **kwargs)
        if response.status_code == 409:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise EntitlementConflictError.from_body(body if isinstance(body, dict) else {})
        if response.is_error:
            message = _error_message(response)
            log.warning("%s %s failed: %s %s", method, url, response.status_code, message)
            raise EntitlementsApiError(response.status_code, message)
        return response.json()

    async def list_organizations(self) -> list[dict]:
        body = await self._request("GET", "/admin/orgs")
        return list(body.get("organizations") or [])

    async def list_entitlements(self, org_id: str) -> list[ModuleEntitlementRow]:
        body = await self._request("GET", f"/admin/orgs/{org_id}/modules")
        return [ModuleEntitlementRow.model_validate(item) for item in body.get("entitlements") or []]

    async def update_entitlement(self, org_id: str, module_key: str, body: dict) -> dict:
        result = await self._request("PUT", f"/admin/orgs/{org_id}/modules/{module_key}", json=body)
        return result.get("entitlement") or {}
