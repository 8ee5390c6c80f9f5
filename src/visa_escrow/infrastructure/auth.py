"""JWT authorizer: resolves bearer tokens to workflow actors.

Tokens are signed with the shared secret (HS256 by default) and carry
``sub`` (the user UUID) and ``role`` (client, agent or admin).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from visa_escrow.domain.collaborators import Actor
from visa_escrow.domain.enums import Role
from visa_escrow.domain.exceptions import NotAuthenticatedError


class JwtAuthorizer:
    def __init__(self, secret_key: str, algorithm: str = "HS256") -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm

    def resolve(self, token: str) -> Actor:
        """Decode ``token`` and return its actor.

        Raises:
            NotAuthenticatedError: invalid signature, expired token, or missing
                or malformed ``sub``/``role`` claims.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as err:
            raise NotAuthenticatedError("Invalid or expired token") from err

        try:
            actor_id = uuid.UUID(str(payload["sub"]))
            role = Role(payload["role"])
        except (KeyError, ValueError) as err:
            raise NotAuthenticatedError("Token is missing a valid subject or role") from err
        return Actor(actor_id=actor_id, role=role)

    def issue(self, actor_id: uuid.UUID, role: Role, expires_in: timedelta | None = None) -> str:
        """Sign a token for ``actor_id``. Used by the simulation and tests."""
        claims: dict = {"sub": str(actor_id), "role": role.value}
        if expires_in is not None:
            claims["exp"] = datetime.now(UTC) + expires_in
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)
