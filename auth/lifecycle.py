"""
auth/lifecycle.py -- Account lifecycle: registration, login, password and
profile changes, admin status/role management, and the single-use token flows
(email verification, password reset, refresh).

Pattern: Service layer. AccountService owns the business rules and delegates
persistence to UserStore / EphemeralTokenStore, hashing to PasswordHasher and
token minting to SessionTokens. The API routes are thin adapters over it.

Security:
  login() runs bcrypt whether or not the email exists (dummy hash) and raises
  the same InvalidCredentials for an unknown email and a wrong password, so
  neither the response nor its timing reveals which accounts exist.

  request_password_reset() returns None for unknown or inactive emails rather
  than raising, for the same reason.

  No token is issued until the identity write has committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from auth.ephemeral import EphemeralTokenStore
from auth.errors import (
    AccountDeactivated,
    AuthError,
    Forbidden,
    InvalidCredentials,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from auth.gate import ensure_can_assign_role, ensure_can_manage
from auth.models import SELF_REGISTRATION_ROLES, Department, Role, TokenKind, User
from auth.passwords import PasswordHasher
from auth.store import UserStore, check_role_fields, normalize_email
from auth.tokens import SessionTokens

logger = logging.getLogger("resourcehub.auth.lifecycle")

NAME_MIN, NAME_MAX = 3, 50
EMAIL_MIN, EMAIL_MAX = 6, 255
PASSWORD_MIN, PASSWORD_MAX = 6, 1024
BIO_MAX = 500

_EMAIL = TypeAdapter(EmailStr)


@dataclass
class RegistrationData:
    name: str
    email: str
    password: str
    role: Role | str
    department: Department | str
    semester: int | None = None


@dataclass
class ProfileUpdate:
    """Partial profile patch. None means "leave unchanged"."""

    name: str | None = None
    department: Department | str | None = None
    semester: int | None = None
    bio: str | None = None
    profile_image: str | None = None


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not NAME_MIN <= len(name) <= NAME_MAX:
        raise ValidationError(f"Name must be between {NAME_MIN} and {NAME_MAX} characters.")
    return name


def _clean_email(email: str) -> str:
    email = normalize_email(email or "")
    if not EMAIL_MIN <= len(email) <= EMAIL_MAX:
        raise ValidationError("Please provide a valid email.")
    try:
        _EMAIL.validate_python(email)
    except PydanticValidationError as exc:
        raise ValidationError("Please provide a valid email.") from exc
    return email


def _check_password(password: str) -> None:
    if not PASSWORD_MIN <= len(password or "") <= PASSWORD_MAX:
        raise ValidationError(f"Password must be between {PASSWORD_MIN} and {PASSWORD_MAX} characters.")


def _parse_role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise ValidationError(f"Role must be one of: {', '.join(r.value for r in Role)}.") from exc


def _parse_department(department: Department | str) -> Department:
    try:
        return Department(department)
    except ValueError as exc:
        raise ValidationError("Please select a valid department.") from exc


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AccountService:
    """Business rules for identities. Every method raises auth.errors types."""

    def __init__(
        self,
        store: UserStore,
        session_tokens: SessionTokens,
        ephemeral: EphemeralTokenStore,
        hasher: PasswordHasher,
    ) -> None:
        self.store = store
        self.session_tokens = session_tokens
        self.ephemeral = ephemeral
        self.hasher = hasher

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def register(self, data: RegistrationData) -> tuple[User, str]:
        """Create a student or faculty account and return (user, session token).

        Raises ValidationError or DuplicateEmail. Nothing is persisted or
        issued when validation fails.
        """
        role = _parse_role(data.role)
        if role not in SELF_REGISTRATION_ROLES:
            allowed = ", ".join(sorted(r.value for r in SELF_REGISTRATION_ROLES))
            raise ValidationError(f"Role must be one of: {allowed}.")
        _check_password(data.password)
        user = User(
            name=_clean_name(data.name),
            email=_clean_email(data.email),
            role=role,
            department=_parse_department(data.department),
            semester=data.semester,
        )
        # Validate role fields before paying for bcrypt.
        check_role_fields(user)
        user.hashed_password = self.hasher.hash(data.password)

        created = self.store.create_user(user)
        logger.info("Registered user %s (%s)", created.id, created.role.value)
        return created, self.session_tokens.issue_for(created)

    def login(self, email: str, password: str) -> tuple[User, str]:
        """Check credentials and return (user, session token).

        Raises:
            InvalidCredentials: unknown email OR wrong password (same message).
            AccountDeactivated: correct password, inactive account.
        """
        user = self.store.get_by_email(email or "", include_password=True)
        if user is None:
            self.hasher.dummy_verify(password or "")
            logger.info("Failed login (unknown email)")
            raise InvalidCredentials()
        if not self.hasher.verify(password or "", user.hashed_password):
            logger.info("Failed login for user %s (bad password)", user.id)
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountDeactivated()

        self.store.update_last_login(user.id)
        fresh = self._require_user(user.id)
        return fresh, self.session_tokens.issue_for(fresh)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace the password after checking the current one.

        Outstanding password-reset and refresh tokens are invalidated.
        """
        _check_password(new_password)
        user = self.store.get_by_id(user_id, include_password=True)
        if user is None:
            raise Unauthenticated("User not found.")
        if not self.hasher.verify(current_password or "", user.hashed_password):
            raise InvalidCredentials("Current password is incorrect.")
        self.store.update_password(user_id, self.hasher.hash(new_password))
        self.ephemeral.invalidate_all(user_id, TokenKind.password_reset)
        self.ephemeral.invalidate_all(user_id, TokenKind.refresh)
        logger.info("Password changed for user %s", user_id)

    def update_profile(self, user_id: int, patch: ProfileUpdate) -> User:
        """Apply only the provided fields. semester is ignored unless the user is a student.

        Only profile columns are written, so status and role changes made
        concurrently by an admin are never overwritten.
        """
        if patch.bio is not None and len(patch.bio) > BIO_MAX:
            raise ValidationError(f"Bio cannot be more than {BIO_MAX} characters.")
        return self.store.update_profile(
            user_id,
            name=_clean_name(patch.name) if patch.name is not None else None,
            department=_parse_department(patch.department) if patch.department is not None else None,
            bio=patch.bio,
            profile_image=patch.profile_image,
            semester=patch.semester,
        )

    def get_user(self, user_id: int) -> User:
        return self._require_user(user_id)

    # ------------------------------------------------------------------
    # Admin operations (callers have already passed the admin role gate)
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        return self.store.list_users()

    def change_role(self, actor: User, target_id: int, new_role: Role | str, semester: int | None = None) -> User:
        """Set target's role.

        Only a super_admin may grant admin. Moving to student needs a
        semester (supplied or already on record); moving away clears it.
        Member IDs are never regenerated.
        """
        role = _parse_role(new_role)
        target = self._require_user(target_id)
        ensure_can_assign_role(actor, target, role)
        saved = self.store.change_role(target_id, role, semester=semester)
        if saved is None:
            raise self._guard_failure(target_id, "change the role of")
        logger.info("User %s changed role of user %s: %s -> %s", actor.id, target_id, target.role.value, role.value)
        return saved

    def toggle_status(self, actor: User, target_id: int) -> User:
        """Flip is_active. super_admin accounts and the actor's own account are immune."""
        target = self._require_user(target_id)
        ensure_can_manage(actor, target, "suspend")
        saved = self.store.toggle_active(target_id)
        if saved is None:
            raise self._guard_failure(target_id, "suspend")
        logger.info(
            "User %s %s user %s", actor.id, "activated" if saved.is_active else "suspended", target_id
        )
        return saved

    def delete_user(self, actor: User, target_id: int) -> None:
        """Delete the user's single-use tokens, then the user.

        Tokens go first so a failure between the two steps never leaves
        tokens without an owner.
        """
        target = self._require_user(target_id)
        ensure_can_manage(actor, target, "delete")
        self.ephemeral.delete_for_user(target_id)
        if not self.store.delete_user(target_id):
            raise self._guard_failure(target_id, "delete")
        logger.info("User %s deleted user %s", actor.id, target_id)

    # ------------------------------------------------------------------
    # Single-use token flows
    # ------------------------------------------------------------------

    def request_email_verification(self, user_id: int) -> str:
        """Issue a fresh verification token; earlier ones stop working."""
        user = self._require_user(user_id)
        if user.is_verified:
            raise ValidationError("Email is already verified.")
        return self.ephemeral.issue(user.id, TokenKind.verification, invalidate_previous=True)

    def verify_email(self, raw_token: str) -> User:
        user_id = self.ephemeral.consume(raw_token, TokenKind.verification)
        return self.store.mark_verified(user_id)

    def request_password_reset(self, email: str) -> str | None:
        """Issue a reset token for email, or return None if there is no active account."""
        user = self.store.get_by_email(email or "")
        if user is None or not user.is_active:
            return None
        return self.ephemeral.issue(user.id, TokenKind.password_reset, invalidate_previous=True)

    def reset_password(self, raw_token: str, new_password: str) -> User:
        """Consume a reset token and set a new password.

        The password is validated first so a rejected password does not burn
        the token.
        """
        _check_password(new_password)
        user_id = self.ephemeral.consume(raw_token, TokenKind.password_reset)
        user = self._require_user(user_id)
        self.store.update_password(user_id, self.hasher.hash(new_password))
        self.ephemeral.invalidate_all(user_id, TokenKind.refresh)
        logger.info("Password reset for user %s", user_id)
        return user

    def issue_refresh_token(self, user_id: int) -> str:
        return self.ephemeral.issue(user_id, TokenKind.refresh)

    def refresh_session(self, raw_token: str) -> tuple[User, str, str]:
        """Trade a refresh token for (user, new session token, new refresh token).

        The presented refresh token is consumed; replaying it fails with
        TokenAlreadyUsed.
        """
        user_id = self.ephemeral.consume(raw_token, TokenKind.refresh)
        user = self.store.get_by_id(user_id)
        if user is None:
            raise Unauthenticated("User not found.")
        if not user.is_active:
            raise AccountDeactivated()
        return user, self.session_tokens.issue_for(user), self.issue_refresh_token(user.id)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def bootstrap_super_admin(self, name: str, email: str, password: str, department: Department | str) -> User:
        """Create the first super_admin. Fails once one exists."""
        if self.store.count_by_role(Role.super_admin) > 0:
            raise ValidationError("A super admin already exists.")
        _check_password(password)
        user = User(
            name=_clean_name(name),
            email=_clean_email(email),
            role=Role.super_admin,
            department=_parse_department(department),
            hashed_password=self.hasher.hash(password),
            is_verified=True,
        )
        created = self.store.create_user(user)
        logger.info("Bootstrapped super admin %s", created.id)
        return created

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_user(self, user_id: int) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFound()
        return user

    def _guard_failure(self, target_id: int, action: str) -> AuthError:
        """Explain a guarded write that matched no row.

        The target passed the policy check but was deleted or made
        super_admin before the write landed.
        """
        if self.store.get_by_id(target_id) is None:
            return NotFound()
        return Forbidden(f"Cannot {action} super admin.")
