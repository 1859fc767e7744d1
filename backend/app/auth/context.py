"""LedgerContext — the caller's capabilities, passed into every service call.

The ledger never reads a global "current user".  Routers build a context
from the request's bearer token and hand it down explicitly; the CLI and
background jobs use ``LedgerContext.system()``.

``cooperative_ids is None`` means national scope (every cooperative).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.auth.permissions import ALL_PERMISSIONS
from app.middleware.exceptions import PermissionDeniedError


@dataclass(frozen=True)
class LedgerContext:
    user_id: str | None
    role: str
    cooperative_ids: frozenset[str] | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def system(cls) -> "LedgerContext":
        return cls(
            user_id=None,
            role="SYSTEM",
            cooperative_ids=None,
            permissions=frozenset(ALL_PERMISSIONS),
        )

    @property
    def is_national(self) -> bool:
        return self.cooperative_ids is None

    def can_access(self, cooperative_id: str) -> bool:
        return self.is_national or cooperative_id in self.cooperative_ids

    def require_cooperative(self, cooperative_id: str) -> None:
        if not self.can_access(cooperative_id):
            raise PermissionDeniedError(
                f"No access to cooperative {cooperative_id}"
            )

    def require(self, permission: str) -> None:
        if permission not in self.permissions:
            raise PermissionDeniedError(f"Requires permission: {permission}")

    def restrict(self, stmt, column):
        """Limit a SELECT to the caller's cooperatives (no-op for national scope)."""
        if self.is_national:
            return stmt
        return stmt.where(column.in_(sorted(self.cooperative_ids)))
