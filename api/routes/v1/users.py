"""
api/routes/v1/users.py -- User management endpoints (admin and super_admin only).

Routes:
  GET    /api/users                    -- list all users
  PUT    /api/users/{id}/role          -- change a user's role
  PUT    /api/users/{id}/toggle-status -- activate / suspend
  DELETE /api/users/{id}               -- delete

Every route depends on require_roles(admin, super_admin). The finer rules
live in auth/gate.py and are applied by AccountService:
  - only a super_admin can grant admin;
  - super_admin accounts cannot be re-roled, suspended or deleted;
  - nobody can suspend or delete their own account.
Missing targets answer 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import MessageResponse, RoleUpdateRequest, UserEnvelope, UserListResponse, UserResponse
from auth.dependencies import require_roles
from auth.lifecycle import AccountService
from auth.models import ADMIN_ROLES, User

router = APIRouter()

require_admin = require_roles(*ADMIN_ROLES)


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


@router.get("/users", response_model=UserListResponse)
def list_users(request: Request, current_user: User = Depends(require_admin)) -> UserListResponse:
    users = _accounts(request).list_users()
    return UserListResponse(count=len(users), users=[UserResponse.from_user(u) for u in users])


@router.put("/users/{user_id}/role", response_model=UserEnvelope)
def update_user_role(
    request: Request,
    user_id: int,
    body: RoleUpdateRequest,
    current_user: User = Depends(require_admin),
) -> UserEnvelope:
    """Change a user's role. Granting admin requires a super_admin caller."""
    user = _accounts(request).change_role(current_user, user_id, body.role, semester=body.semester)
    return UserEnvelope(message="User role updated successfully", user=UserResponse.from_user(user))


@router.put("/users/{user_id}/toggle-status", response_model=UserEnvelope)
def toggle_user_status(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> UserEnvelope:
    """Flip a user's active flag. Takes effect on the target's very next request."""
    user = _accounts(request).toggle_status(current_user, user_id)
    state = "activated" if user.is_active else "suspended"
    return UserEnvelope(message=f"User {state} successfully", user=UserResponse.from_user(user))


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> MessageResponse:
    _accounts(request).delete_user(current_user, user_id)
    return MessageResponse(message="User deleted successfully")
