"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "access_token" cookie -- set by the login response for browser clients.

get_current_user() runs the gate (auth/gate.py) and raises the domain error;
api/main.py maps it to the JSON envelope. require_roles() builds a dependency
that additionally enforces a role set.

Layer rule: auth/dependencies.py may import from fastapi (Request) because
this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.gate import authenticate, authorize
from auth.models import Role, User
from auth.tokens import AUTH_COOKIE_NAME


def bearer_token(request: Request) -> str | None:
    """Extract the session token from the Authorization header, falling back to the cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(AUTH_COOKIE_NAME) or None


def get_current_user(request: Request) -> User:
    """Require a valid session on a live, active account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    state = request.app.state
    return authenticate(bearer_token(request), state.session_tokens, state.user_store)


def require_roles(*roles: Role) -> Callable[..., User]:
    """Build a dependency that requires authentication and one of roles.

        @router.get("/users")
        def route(user: User = Depends(require_roles(Role.admin, Role.super_admin))): ...
    """

    def dependency(user: User = Depends(get_current_user)) -> User:
        return authorize(user, roles)

    return dependency
