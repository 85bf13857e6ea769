"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with an Authorization: Bearer <access token> header.
Refresh tokens are rejected here; they are only accepted by POST /auth/refresh.

get_current_user() raises an AuthError (rendered as 401 by the API exception
handler) when the request is not authenticated. require_admin() additionally
raises Forbidden (403) for non-admin users.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.errors import Forbidden, TokenError, TokenMalformed
from auth.models import PublicUser
from auth.service import AuthSessionService

logger = logging.getLogger("jobboard.auth")


def get_auth_service(request: Request) -> AuthSessionService:
    return request.app.state.auth_service


def get_current_user(request: Request) -> PublicUser:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: PublicUser = Depends(get_current_user)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise TokenMalformed("missing bearer token")
    token = auth_header[7:].strip()
    try:
        return get_auth_service(request).authenticate(token)
    except TokenError as exc:
        logger.info("Rejected bearer token on %s: %s (%s)", request.url.path, type(exc).__name__, exc)
        raise


def require_admin(request: Request) -> PublicUser:
    """Require admin role. 401 if unauthenticated, 403 if not admin."""
    user = get_current_user(request)
    if user.role != "admin":
        raise Forbidden("Admin access required.")
    return user
