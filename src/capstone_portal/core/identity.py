"""Verified caller identity.

The identity provider is an external token issuer.  This module only
verifies its bearer tokens and turns the claims into a :class:`Caller`
that every workflow method receives explicitly.

Expected claims::

    {"sub": "<uuid>", "role": "student" | "supervisor" | "admin",
     "email_verified": true, "exp": 1700000000}
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from jose import JWTError, jwt

from capstone_portal.core.exceptions import ForbiddenError, UnauthenticatedError
from capstone_portal.core.models.enums import Role


@dataclass(frozen=True)
class Caller:
    """The authenticated user on whose behalf a workflow method runs.

    Attributes:
        uid: Identity-provider uid; equals the student/supervisor primary key.
        role: Role asserted by the identity provider.
        email_verified: Whether the provider has verified the email address.
    """

    uid: uuid.UUID
    role: Role
    email_verified: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def require_role(self, *roles: Role) -> None:
        """Raise :class:`ForbiddenError` unless the caller holds one of *roles*."""
        if self.role not in roles:
            allowed = ", ".join(r.value for r in roles)
            raise ForbiddenError(f"This action requires one of the roles: {allowed}")


def decode_bearer_token(token: str, secret_key: str, algorithm: str = "HS256") -> Caller:
    """Verify a bearer token and return the caller it identifies.

    Args:
        token: Raw JWT taken from the ``Authorization`` header.
        secret_key: Shared verification secret.
        algorithm: Expected signature algorithm.

    Returns:
        The verified :class:`Caller`.

    Raises:
        UnauthenticatedError: If the signature, expiry or claims are invalid.
    """
    try:
        claims = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as exc:
        raise UnauthenticatedError("Invalid or expired credential") from exc

    try:
        uid = uuid.UUID(str(claims["sub"]))
        role = Role(claims["role"])
    except (KeyError, ValueError) as exc:
        raise UnauthenticatedError("Credential is missing required claims") from exc

    return Caller(
        uid=uid,
        role=role,
        email_verified=bool(claims.get("email_verified", False)),
    )
