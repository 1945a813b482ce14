"""JWT authentication dependencies for FastAPI.

The identity service issues the tokens; this module only validates them and
resolves the caller into an ``AuthenticatedUser`` carrying a single
``ActorRole``. Session storage and role normalization live upstream.
"""

import logging
import uuid
from dataclasses import dataclass

from fastapi import Depends, Query, Request, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ecopickup.config import settings
from ecopickup.exceptions import UnauthorizedException
from ecopickup.models.enums import ActorRole

logger = logging.getLogger(__name__)

# Bearer token from the Authorization header; missing credentials are handled below
_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthenticatedUser:
    """Represents the authenticated actor extracted from a JWT token."""

    id: uuid.UUID
    email: str
    role: ActorRole
    display_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


def _decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises UnauthorizedException on failure."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc


def resolve_user(token: str) -> AuthenticatedUser:
    """Build an AuthenticatedUser from a raw bearer token."""
    payload = _decode_token(token)
    try:
        return AuthenticatedUser(
            id=uuid.UUID(payload["sub"]),
            email=payload["email"],
            role=ActorRole(payload["role"]),
            display_name=payload.get("name", ""),
        )
    except (KeyError, ValueError) as exc:
        raise UnauthorizedException("Token is missing required claims") from exc


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """FastAPI dependency that extracts and validates the current actor from JWT."""
    if credentials is None:
        raise UnauthorizedException("Authentication required")

    user = resolve_user(credentials.credentials)
    request.state.user = user
    return user


async def get_websocket_user(
    websocket: WebSocket,
    token: str | None = Query(None),
) -> AuthenticatedUser | None:
    """WebSocket variant: browsers cannot set headers, so the JWT rides in ``?token=``.

    Returns None instead of raising; the endpoint closes the socket with a
    policy-violation code since HTTP error envelopes do not apply there.
    """
    if not token:
        return None
    try:
        user = resolve_user(token)
    except UnauthorizedException:
        return None
    websocket.state.user = user
    return user
