"""Bearer-token identity for API callers."""

import time
from dataclasses import dataclass

import jwt

from .errors import AuthError

ROLE_USER = "user"
ROLE_SELLER = "seller"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_SELLER, ROLE_ADMIN)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller."""

    id: str
    role: str = ROLE_USER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class TokenIdentityProvider:
    """
    Issues and validates HS256 JWT access tokens.

    Payload claims: ``sub`` (user ID), ``role``, ``iat`` and ``exp``.
    """

    ALGORITHM = "HS256"

    def __init__(self, secret: str, ttl: int = 86400):
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self.ttl = ttl

    def issue(self, user_id: str, role: str = ROLE_USER, ttl: int | None = None) -> str:
        """Create a signed token for a user."""
        now = int(time.time())
        payload = {
            "sub": user_id,
            "role": role,
            "iat": now,
            "exp": now + (self.ttl if ttl is None else ttl),
        }
        return jwt.encode(payload, self._secret, algorithm=self.ALGORITHM)

    def authenticate(self, token: str | None) -> Identity:
        """
        Validate a token and return the caller's identity.

        Raises:
            AuthError: If the token is missing, malformed, forged or expired.
        """
        if not token:
            raise AuthError("no token")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("token expired") from None
        except jwt.InvalidTokenError:
            raise AuthError("token failed") from None

        return Identity(id=str(payload["sub"]), role=str(payload.get("role", ROLE_USER)))
