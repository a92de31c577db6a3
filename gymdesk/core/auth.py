"""
Auth utilities for the gymdesk API.

Sessions are owned by the frontend auth provider; this module only resolves
the (user_id, role) pair for a request and gates endpoints by role.

Priority:
1. Bearer JWT (HS256, signed with AUTH_SECRET) carrying `sub` and `role`
2. X-User-Id / X-User-Role headers when ALLOW_HEADER_AUTH is on (dev, tests)
3. 401 Unauthorized
"""
from dataclasses import dataclass
from typing import Optional
import logging

import jwt
from fastapi import Depends, Header, Request

from gymdesk.core.config import settings
from gymdesk.core.errors import UnauthorizedError, PermissionError

logger = logging.getLogger("gymdesk.auth")

ROLES = ("admin", "trainer", "member")


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller as resolved from the session token."""
    user_id: str
    role: str


def decode_session_token(token: str, secret: Optional[str] = None) -> CurrentUser:
    """
    Verify a session JWT and extract the caller.

    Raises:
        UnauthorizedError: expired, malformed or unsigned token
    """
    key = secret or settings.AUTH_SECRET
    if not key:
        raise UnauthorizedError("Session tokens are not accepted (AUTH_SECRET not configured)")

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token")

    role = payload.get("role") or "member"
    if role not in ROLES:
        raise UnauthorizedError("Invalid token")
    return CurrentUser(user_id=str(payload["sub"]), role=role)


async def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Dev/test only: caller user ID"),
    x_user_role: Optional[str] = Header(None, description="Dev/test only: caller role"),
) -> CurrentUser:
    """Resolve the caller for this request or raise 401."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user = decode_session_token(auth_header[7:].strip())
        request.state.user_id = user.user_id
        return user

    if settings.ALLOW_HEADER_AUTH and x_user_id:
        role = (x_user_role or "member").lower()
        if role not in ROLES:
            raise UnauthorizedError(f"Unknown role: {role}")
        request.state.user_id = x_user_id
        return CurrentUser(user_id=x_user_id, role=role)

    raise UnauthorizedError("Unauthorized")


def require_role(*roles: str):
    """
    Dependency factory gating an endpoint to the given roles.

    Usage:
        @router.get("/admin/thing")
        def thing(user: CurrentUser = Depends(require_role("admin"))): ...
    """
    allowed = set(roles)

    async def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if allowed and user.role not in allowed:
            logger.warning(
                "auth.forbidden",
                extra={"user_id": user.user_id, "role": user.role, "required": sorted(allowed)},
            )
            raise PermissionError("Forbidden")
        return user

    return _dependency
