"""Cost visibility predicate consulted before cost figures are computed."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol


class CostVisibility(Protocol):
    def can_view_cost(self) -> bool: ...


@dataclass(frozen=True)
class RoleCostVisibility:
    """Allow cost figures for callers whose role is in ``allowed_roles``."""

    role: str | None
    allowed_roles: frozenset[str]

    @classmethod
    def for_role(cls, role: str | None, allowed_roles: Iterable[str]) -> RoleCostVisibility:
        normalised = role.strip().lower() if role else None
        return cls(role=normalised or None, allowed_roles=frozenset(r.lower() for r in allowed_roles))

    def can_view_cost(self) -> bool:
        return self.role is not None and self.role in self.allowed_roles
