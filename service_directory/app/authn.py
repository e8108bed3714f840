"""
Principal resolution from the Authorization header.

The bearer token is the caller's user id. Token issuance and verification
belong to an upstream identity provider.
"""

import uuid
from typing import Optional, Protocol

from fastapi import Request

from shared.errors import AuthenticationError, NotFoundError
from shared.logging import get_logger, set_user_context

from .authz.principal import Principal
from .domain.models import User, UserId

logger = get_logger("directory.authn")


class UserLookup(Protocol):

    async def get_user(self, user_id: UserId) -> User: ...


def parse_bearer_token(authorization: Optional[str]) -> Optional[UserId]:
    """Extract the user id from ``Bearer <uuid>``; ``None`` when absent."""
    if not authorization:
        return None

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid authorization header")

    try:
        return UserId(uuid.UUID(token.strip()))
    except ValueError:
        raise AuthenticationError("Invalid token format")


async def resolve_principal(authorization: Optional[str], users: UserLookup) -> Principal:
    """Resolve the caller; unknown users are rejected rather than downgraded."""
    user_id = parse_bearer_token(authorization)
    if user_id is None:
        return Principal.anonymous()

    try:
        user = await users.get_user(user_id)
    except NotFoundError:
        logger.info("Unknown user in bearer token", user_id=str(user_id))
        raise AuthenticationError("Unknown user")

    set_user_context(str(user.id))
    return Principal.user(user.id)


def principal_dependency(users: UserLookup):
    """Build a FastAPI dependency resolving the request principal."""

    async def get_principal(request: Request) -> Principal:
        return await resolve_principal(request.headers.get("authorization"), users)

    return get_principal
