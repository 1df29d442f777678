"""Module entitlement dependency evaluation.

An `EntitlementGraph` is built from one organization's full entitlement list and
answers two questions:

  - which module keys count as enabled (`enabled_keys`)
  - which enabled modules directly depend on a given key (`dependents_of`)

The toggle gate (`can_enable` / `can_disable`) is a pure decision over those two
structures. Only direct dependencies are checked; transitive chains and cycles
are left alone. `find_dependency_cycles` and `unknown_dependencies` report such
configurations without changing any decision.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Sequence

from pydantic import BaseModel, ConfigDict, field_validator

from app.db.models.system_modules import ACTIVE_STATUSES


class ModuleEntitlementRow(BaseModel):
    """One tenant x module entitlement as consumed by the evaluator.

    Parsed at the boundary (HTTP payloads, ORM rows) so business logic never
    sees loosely-typed dicts.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    module_key: str
    module_name: str = ""
    description: str | None = None
    dependency_keys: tuple[str, ...] = ()
    is_core: bool = False
    enabled: bool = False
    billing_model: str = "manual"
    status: str = "inactive"
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    notes: str | None = None

    @field_validator("dependency_keys", mode="before")
    @classmethod
    def _clean_dependency_keys(cls, value):
        if value is None:
            return ()
        return tuple(dict.fromkeys(str(k) for k in value if k))

    @property
    def label(self) -> str:
        return self.module_name or self.module_key


Predicate = Callable[[ModuleEntitlementRow], bool]


def is_enabled(row: ModuleEntitlementRow) -> bool:
    return row.enabled


def is_active_entitlement(row: ModuleEntitlementRow) -> bool:
    """Server view: enabled and in a status that still grants access."""
    return row.enabled and row.status in ACTIVE_STATUSES


@dataclass(frozen=True)
class ToggleDecision:
    allowed: bool
    module_key: str
    enabled: bool
    missing_dependencies: tuple[str, ...] = ()
    dependent_modules: tuple[ModuleEntitlementRow, ...] = ()

    @property
    def dependent_names(self) -> list[str]:
        return [m.label for m in self.dependent_modules]

    @property
    def reason(self) -> str | None:
        if self.missing_dependencies:
            return f"Enable dependencies first: {', '.join(self.missing_dependencies)}"
        if self.dependent_modules:
            return f"Disable dependents first: {', '.join(self.dependent_names)}"
        return None


@dataclass
class EntitlementGraph:
    rows: Sequence[ModuleEntitlementRow]
    counts_as_enabled: Predicate = is_enabled
    enabled_keys: frozenset[str] = field(init=False)
    _dependents: dict[str, list[ModuleEntitlementRow]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.rows = tuple(self.rows)
        enabled: set[str] = set()
        dependents: dict[str, list[ModuleEntitlementRow]] = {}
        for row in self.rows:
            if not self.counts_as_enabled(row):
                continue
            enabled.add(row.module_key)
            for dep in row.dependency_keys:
                dependents.setdefault(dep, []).append(row)
        self.enabled_keys = frozenset(enabled)
        self._dependents = dependents

    @classmethod
    def from_payload(cls, items: Iterable[dict], counts_as_enabled: Predicate = is_enabled) -> "EntitlementGraph":
        return cls([ModuleEntitlementRow.model_validate(item) for item in items], counts_as_enabled)

    def get(self, module_key: str) -> ModuleEntitlementRow | None:
        return next((r for r in self.rows if r.module_key == module_key), None)

    def dependents_of(self, module_key: str) -> list[ModuleEntitlementRow]:
        """Enabled modules listing `module_key` in their dependency_keys, in list order."""
        return [r for r in self._dependents.get(module_key, []) if r.module_key != module_key]

    def missing_dependencies(self, module: ModuleEntitlementRow) -> list[str]:
        return [k for k in module.dependency_keys if k not in self.enabled_keys]

    def can_enable(self, module: ModuleEntitlementRow) -> ToggleDecision:
        missing = self.missing_dependencies(module)
        return ToggleDecision(not missing, module.module_key, True, missing_dependencies=tuple(missing))

    def can_disable(self, module: ModuleEntitlementRow) -> ToggleDecision:
        dependents = self.dependents_of(module.module_key)
        return ToggleDecision(not dependents, module.module_key, False, dependent_modules=tuple(dependents))

    def check_toggle(self, module: ModuleEntitlementRow, enabled: bool) -> ToggleDecision:
        return self.can_enable(module) if enabled else self.can_disable(module)

    def blocked_reason(self, module: ModuleEntitlementRow) -> str | None:
        """Why the module's switch is locked in its current position, if it is."""
        if not module.enabled:
            return self.can_enable(module).reason
        return self.can_disable(module).reason


def unknown_dependencies(rows: Iterable[ModuleEntitlementRow]) -> dict[str, list[str]]:
    rows = list(rows)
    known = {r.module_key for r in rows}
    out: dict[str, list[str]] = {}
    for row in rows:
        dangling = [k for k in row.dependency_keys if k not in known]
        if dangling:
            out[row.module_key] = dangling
    return out


def find_dependency_cycles(rows: Iterable[ModuleEntitlementRow]) -> list[list[str]]:
    """Return each dependency cycle once, as the key path that closes on itself."""
    graph = {r.module_key: list(r.dependency_keys) for r in rows}
    cycles: list[list[str]] = []
    seen: set[frozenset[str]] = set()
    done: set[str] = set()

    def visit(key: str, path: list[str], on_path: set[str]) -> None:
        for dep in graph.get(key, []):
            if dep in on_path:
                cycle = path[path.index(dep):]
                marker = frozenset(cycle)
                if marker not in seen:
                    seen.add(marker)
                    cycles.append(cycle + [dep])
            elif dep in graph and dep not in done:
                on_path.add(dep)
                path.append(dep)
                visit(dep, path, on_path)
                path.pop()
                on_path.discard(dep)
        done.add(key)

    for key in graph:
        if key not in done:
            visit(key, [key], {key})
    return cycles
