"""Bearer token issuance and resolution."""

from __future__ import annotations

import time
from dataclasses import dataclass

from joserfc import jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from tasko_service.core.exceptions import ServiceError

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    """Who is calling: the resolved user id and role."""

    user_id: str
    role: str


class TokenService:
    """
    Issues and resolves HS256 JWT bearer tokens.

    Claims: ``sub`` (user id), ``role``, ``iat``, ``exp``.
    """

    def __init__(self, secret: str, ttl_seconds: int) -> None:
        self._key = OctKey.import_key(secret.encode())
        self._ttl_seconds = ttl_seconds

    def issue(self, user_id: str, role: str) -> str:
        """Create a signed token for a user."""
        issued_at = int(time.time())
        claims = {
            "sub": user_id,
            "role": role,
            "iat": issued_at,
            "exp": issued_at + self._ttl_seconds,
        }
        return jwt.encode({"alg": _ALGORITHM}, claims, self._key, algorithms=[_ALGORITHM])

    def resolve(self, token: str) -> Identity:
        """
        Verify a token and return the identity it carries.

        Raises:
            ServiceError: UNAUTHORIZED for malformed, forged or expired tokens
        """
        try:
            decoded = jwt.decode(token, self._key, algorithms=[_ALGORITHM])
            registry = jwt.JWTClaimsRegistry(
                exp={"essential": True},
                sub={"essential": True},
                role={"essential": True},
            )
            registry.validate(decoded.claims)
        except (JoseError, ValueError) as exc:
            raise ServiceError("UNAUTHORIZED", "Invalid or expired token", 401, {}) from exc

        user_id = decoded.claims.get("sub")
        role = decoded.claims.get("role")
        if not isinstance(user_id, str) or not isinstance(role, str):
            raise ServiceError("UNAUTHORIZED", "Invalid or expired token", 401, {})
        return Identity(user_id=user_id, role=role)
