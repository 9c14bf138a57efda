"""
auth/gate.py -- Per-request authentication and role policy.

Plain functions with explicit inputs. Each route calls them (through the thin
FastAPI adapter in auth/dependencies.py); nothing is threaded through hidden
request state.

A session token is a point-in-time snapshot bound to one account by its
stamp claim. authenticate() therefore always reloads the identity from the
store, rejects a token whose stamp does not match, and trusts the live
record, not the claims, for both is_active and role:
  - deactivating a user locks out tokens that were issued before the toggle
    on the very next request;
  - a demoted admin loses admin routes immediately, a promoted user gains
    them immediately, without waiting for token expiry.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Iterable

from auth.errors import AccountDeactivated, Forbidden, SessionTokenError, Unauthenticated
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import SessionTokens

logger = logging.getLogger("resourcehub.auth.gate")


def authenticate(token: str | None, tokens: SessionTokens, store: UserStore) -> User:
    """Resolve a bearer token to the live identity.

    Raises:
        Unauthenticated:    token missing, malformed, expired, or its user is gone.
        AccountDeactivated: token is fine but the account is inactive.
    """
    if not token:
        raise Unauthenticated("Not authorized to access this route. No token provided.")
    try:
        claims = tokens.verify(token)
    except SessionTokenError as exc:
        logger.debug("Rejected session token: %s", exc)
        raise Unauthenticated() from exc

    user = store.get_by_id(claims.user_id)
    if user is None:
        raise Unauthenticated("User not found.")
    if not hmac.compare_digest(claims.stamp.encode(), user.session_stamp.encode()):
        # Same id, different account: the token's owner was deleted.
        logger.warning("Session token for user %s carries a stale account stamp", claims.user_id)
        raise Unauthenticated("User not found.")
    if not user.is_active:
        raise AccountDeactivated("User account is deactivated.")
    if user.role != claims.role:
        logger.info("Role for user %s changed since token issue (%s -> %s)", user.id, claims.role, user.role.value)
    return user


def authorize(user: User, allowed_roles: Iterable[Role | str]) -> User:
    """Raise Forbidden unless user's role is in allowed_roles. Returns user for chaining."""
    allowed = {Role(r) for r in allowed_roles}
    if Role(user.role) not in allowed:
        raise Forbidden(f"User role {Role(user.role).value} is not authorized to access this route.")
    return user


def ensure_can_assign_role(actor: User, target: User, new_role: Role | str) -> None:
    """Role-grant policy.

    - Only a super_admin may grant admin or super_admin.
    - A super_admin's own role cannot be changed through this path.
    """
    new_role = Role(new_role)
    if new_role in (Role.admin, Role.super_admin) and actor.role != Role.super_admin:
        raise Forbidden("Only super admin can create admins.")
    if target.role == Role.super_admin:
        raise Forbidden("Cannot change the role of a super admin.")


def ensure_can_manage(actor: User, target: User, action: str) -> None:
    """Guard for toggle-status and delete.

    super_admin accounts are immune to both; nobody may toggle or delete
    their own account (no self-lockout).
    """
    if target.role == Role.super_admin:
        raise Forbidden(f"Cannot {action} super admin.")
    if actor.id == target.id:
        raise Forbidden(f"You cannot {action} your own account.")
