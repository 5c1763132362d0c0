# tunesnow/core/security.py
from __future__ import annotations

"""
TunesNow — Authentication helpers
=================================
Tokens are issued by the external identity service; this module only
verifies them and turns the claims into a `Principal`.

- HS* JWT verification via python-jose with optional issuer/audience checks
- `get_current_principal` FastAPI dependency (HTTP Bearer)
- `create_access_token` for local tooling and tests

Claims
------
sub    : principal id (required)
roles  : list[str] (optional; a single string is accepted too)
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional
from uuid import uuid4
import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from tunesnow.core.config import settings
from tunesnow.core.exceptions import InvalidTokenException

security = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as vouched for by the identity service."""

    id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(settings.ADMIN_ROLE)


# ───────────────────────────────────────────────
# 🪪 JWT — Access token (dev tooling / tests)
# ───────────────────────────────────────────────
def create_access_token(
    subject: str,
    *,
    roles: Iterable[str] = (),
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Mint a short-lived access token the way the identity service does."""
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": str(subject),
        "roles": sorted(set(roles)),
        "iat": now,
        "nbf": now,
        "exp": now + (expires_delta or timedelta(minutes=30)),
        "jti": str(uuid4()),
        "token_type": "access",
    }
    if settings.JWT_ISSUER:
        payload["iss"] = settings.JWT_ISSUER
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET_KEY.get_secret_value(), algorithm=settings.JWT_ALGORITHM)


# ───────────────────────────────────────────────
# 🔓 Decode
# ───────────────────────────────────────────────
def decode_access_token(token: str) -> Principal:
    """Verify signature and standard claims, then build a `Principal`.

    Raises
    ------
    InvalidTokenException
        401 for invalid/expired tokens, missing subject or wrong token type.
    """
    audience = settings.JWT_AUDIENCE or None
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY.get_secret_value(),
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_aud": bool(audience)},
            audience=audience,
            issuer=settings.JWT_ISSUER or None,
        )
    except ExpiredSignatureError:
        logger.info("Token expired.")
        raise InvalidTokenException(detail="Token has expired.")
    except JWTError as e:
        logger.warning("JWT decoding failed: %s", e)
        raise InvalidTokenException(detail="Invalid token.")

    sub = payload.get("sub")
    if not sub:
        raise InvalidTokenException(detail="Token missing subject.")
    if payload.get("token_type", "access") != "access":
        raise InvalidTokenException(detail="Invalid token type.")

    raw_roles = payload.get("roles") or []
    if isinstance(raw_roles, str):
        raw_roles = [raw_roles]
    return Principal(id=str(sub), roles=frozenset(str(r) for r in raw_roles))


# ───────────────────────────────────────────────
# 👤 Dependency
# ───────────────────────────────────────────────
async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """FastAPI dependency: the authenticated principal or 401."""
    if credentials is None or (credentials.scheme or "").lower() != "bearer" or not credentials.credentials:
        raise InvalidTokenException(detail="Not authenticated")
    return decode_access_token(credentials.credentials)


__all__ = ["Principal", "create_access_token", "decode_access_token", "get_current_principal", "security"]
