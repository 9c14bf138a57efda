"""
api/routes/v1/auth.py -- Authentication and self-service account endpoints.

Routes:
  POST /api/auth/register              -- create student/faculty account; 201 + token
  POST /api/auth/login                 -- password login; token + refresh token + cookie
  GET  /api/auth/me                    -- current user (requires auth)
  POST /api/auth/logout                -- clears cookie; 200 (requires auth)
  PUT  /api/auth/update-profile        -- partial profile update (requires auth)
  PUT  /api/auth/change-password       -- requires current password (requires auth)
  POST /api/auth/refresh               -- trade a refresh token for a new session
  POST /api/auth/verify-email/request  -- issue a verification token (requires auth)
  POST /api/auth/verify-email          -- consume a verification token
  POST /api/auth/forgot-password       -- issue a password-reset token
  POST /api/auth/reset-password        -- consume a reset token, set new password

Handlers are plain `def` (not async): bcrypt and the SQLAlchemy store are
blocking, so FastAPI runs them in its threadpool instead of on the event loop.

Domain errors raised by AccountService / the gate propagate to the single
AuthError handler in api/main.py.

Security:
  Cache-Control: no-store on every response that carries a token.
  Logout is a client-side discard: session tokens are stateless and there is
  nothing to revoke server-side.
  forgot-password answers identically whether or not the email exists.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenIssuedResponse,
    TokenRequest,
    UpdateProfileRequest,
    UserEnvelope,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.lifecycle import AccountService, ProfileUpdate, RegistrationData
from auth.models import User
from auth.tokens import AUTH_COOKIE_NAME, set_auth_cookie

# Auth policy:
# - POST /auth/register, /auth/login, /auth/refresh:         public
# - POST /auth/verify-email, /auth/forgot-password,
#        /auth/reset-password:                               public (token in body is the credential)
# - GET  /auth/me, POST /auth/logout, PUT /auth/update-profile,
#   PUT  /auth/change-password, POST /auth/verify-email/request: get_current_user
router = APIRouter()


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


def _issue_cookie(request: Request, response: Response, token: str) -> None:
    settings = request.app.state.settings
    set_auth_cookie(response, token, max_age=settings.token_expire_seconds, secure=settings.secure_cookies)
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Register a student or faculty account and sign it in."""
    accounts = _accounts(request)
    user, token = accounts.register(
        RegistrationData(
            name=body.name,
            email=body.email,
            password=body.password,
            role=body.role,
            department=body.department,
            semester=body.semester,
        )
    )
    _issue_cookie(request, response, token)
    return AuthResponse(
        message="Registration successful",
        token=token,
        refresh_token=accounts.issue_refresh_token(user.id),
        user=UserResponse.from_user(user),
    )


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body.
    """
    accounts = _accounts(request)
    user, token = accounts.login(body.email, body.password)
    _issue_cookie(request, response, token)
    return AuthResponse(
        message="Login successful",
        token=token,
        refresh_token=accounts.issue_refresh_token(user.id),
        user=UserResponse.from_user(user),
    )


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> AuthResponse:
    """Rotate a refresh token: the presented one is consumed, a new one is returned."""
    user, token, new_refresh = _accounts(request).refresh_session(body.refresh_token)
    _issue_cookie(request, response, token)
    return AuthResponse(
        message="Session refreshed",
        token=token,
        refresh_token=new_refresh,
        user=UserResponse.from_user(user),
    )


@router.post("/auth/verify-email", response_model=UserEnvelope)
def verify_email(request: Request, body: TokenRequest) -> UserEnvelope:
    user = _accounts(request).verify_email(body.token)
    return UserEnvelope(message="Email verified", user=UserResponse.from_user(user))


@router.post("/auth/forgot-password", response_model=TokenIssuedResponse)
def forgot_password(request: Request, response: Response, body: ForgotPasswordRequest) -> TokenIssuedResponse:
    """Start a password reset. The answer does not reveal whether the email is registered."""
    raw = _accounts(request).request_password_reset(body.email)
    response.headers["Cache-Control"] = "no-store"
    return TokenIssuedResponse(
        message="If that email is registered, a password reset link has been sent.",
        token=raw if request.app.state.settings.debug else None,
    )


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    _accounts(request).reset_password(body.token, body.password)
    return MessageResponse(message="Password has been reset. Please log in.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserEnvelope)
def me(current_user: User = Depends(get_current_user)) -> UserEnvelope:
    """Return the live record of the authenticated user."""
    return UserEnvelope(user=UserResponse.from_user(current_user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(response: Response, current_user: User = Depends(get_current_user)) -> MessageResponse:
    """Clear the auth cookie. Idempotent; the client discards its bearer token."""
    response.delete_cookie(AUTH_COOKIE_NAME)
    return MessageResponse(message="Logged out successfully")


@router.put("/auth/update-profile", response_model=UserEnvelope)
def update_profile(
    request: Request,
    body: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
) -> UserEnvelope:
    """Apply the provided profile fields; semester only sticks for students."""
    user = _accounts(request).update_profile(
        current_user.id,
        ProfileUpdate(
            name=body.name,
            department=body.department,
            semester=body.semester,
            bio=body.bio,
            profile_image=body.profile_image,
        ),
    )
    return UserEnvelope(message="Profile updated successfully", user=UserResponse.from_user(user))


@router.put("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    _accounts(request).change_password(current_user.id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post("/auth/verify-email/request", response_model=TokenIssuedResponse)
def request_email_verification(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
) -> TokenIssuedResponse:
    """Issue a fresh verification token. Earlier tokens stop working."""
    raw = _accounts(request).request_email_verification(current_user.id)
    response.headers["Cache-Control"] = "no-store"
    return TokenIssuedResponse(
        message="Verification email sent.",
        token=raw if request.app.state.settings.debug else None,
    )
