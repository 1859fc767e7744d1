"""Role → permission table for ledger access.

Design:
  - Roles come from the identity service's JWT (`role` claim).
  - Each role has a fixed DEFAULT permission set defined here.
  - A token may carry `permissions` overrides: {perm: True/False}.

Permission naming: `<resource>.<action>`
"""

from __future__ import annotations


ALL_PERMISSIONS: set[str] = {
    "ledger.read",        # batches, stock, lineage, traceability
    "ledger.write",       # create batches, record transactions
    "reports.read",       # cooperative-level rollups
    "reports.national",   # province / nation rollups, supply projection
}


ROLE_DEFAULTS: dict[str, set[str]] = {
    "SUPER_ADMIN": ALL_PERMISSIONS.copy(),

    "ADMIN": {
        "ledger.read", "ledger.write",
        "reports.read", "reports.national",
    },

    "OPERATOR": {
        "ledger.read", "ledger.write",
    },
}

# Roles whose scope is every cooperative regardless of assignments
NATIONAL_ROLES: set[str] = {"SUPER_ADMIN"}


def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> frozenset[str]:
    """Compute effective permissions for a caller.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {perm: True} adds, {perm: False} removes.
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_PERMISSIONS:
                continue  # ignore unknown permissions
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return frozenset(base)
