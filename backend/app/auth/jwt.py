"""JWT encoding and decoding.

Tokens are issued by the cooperative identity service; this module only
needs to verify them.  ``create_access_token`` exists for the CLI and
tests, which mint tokens with the shared secret.

Token claims:
  - sub:              user ID
  - role:             SUPER_ADMIN | ADMIN | OPERATOR
  - cooperative_ids:  cooperatives the user is assigned to
  - permissions:      optional {perm: bool} overrides on role defaults
  - type:             "access"
  - exp:              expiry timestamp
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    user_id: str,
    role: str,
    cooperative_ids: list[str] | None = None,
    permissions: dict[str, bool] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    payload = {
        "sub": user_id,
        "role": role,
        "cooperative_ids": cooperative_ids or [],
        "type": "access",
        "exp": expire,
    }
    if permissions:
        payload["permissions"] = permissions
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
