"""FastAPI dependencies that turn a bearer token into a LedgerContext.

Dependencies:
  get_ledger_context       → decode JWT, return LedgerContext (or 401)
  require_permission(...)  → same, plus a granular permission check (403)
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.context import LedgerContext
from app.auth.jwt import decode_token
from app.auth.permissions import NATIONAL_ROLES, resolve_permissions

# Tokens come from the identity service's login endpoint
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_ledger_context(token: str = Depends(oauth2_scheme)) -> LedgerContext:
    """Decode the JWT and build the caller's explicit ledger context."""
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    role: str | None = payload.get("role")
    if not user_id or not role or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    cooperative_ids = (
        None if role in NATIONAL_ROLES
        else frozenset(payload.get("cooperative_ids") or [])
    )
    return LedgerContext(
        user_id=user_id,
        role=role,
        cooperative_ids=cooperative_ids,
        permissions=resolve_permissions(role, payload.get("permissions")),
    )


def require_permission(permission: str):
    """Dependency factory — require a granular permission.

    Usage:
        @router.post("/")
        async def create(ctx: LedgerContext = Depends(require_permission("ledger.write"))):
            ...
    """
    async def _check(ctx: LedgerContext = Depends(get_ledger_context)) -> LedgerContext:
        if permission not in ctx.permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return ctx

    return _check
