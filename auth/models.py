"""
auth/models.py -- Domain dataclasses and enums for identity entities.

Pattern: Data class (pure data container, almost no logic). Stores and the
account service do the work; these types own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    student = "student"
    faculty = "faculty"
    admin = "admin"
    super_admin = "super_admin"


# Roles that pass the admin gate on /users routes.
ADMIN_ROLES: frozenset[Role] = frozenset({Role.admin, Role.super_admin})

# Roles an anonymous caller may pick at registration. Admin tiers are only
# reachable through a role grant or the bootstrap CLI.
SELF_REGISTRATION_ROLES: frozenset[Role] = frozenset({Role.student, Role.faculty})


class Department(str, Enum):
    CSE = "CSE"
    EEE = "EEE"
    BBA = "BBA"
    MBA = "MBA"
    LAW = "LAW"
    ENG = "ENG"
    PHARMACY = "PHARMACY"


class TokenKind(str, Enum):
    verification = "verification"
    password_reset = "password_reset"
    refresh = "refresh"


@dataclass
class User:
    """A registered identity.

    email is always stored lowercased so uniqueness is case-insensitive.

    hashed_password is populated only when the caller asked the store for it
    explicitly (include_password=True). Everything that leaves the service
    boundary is built from a User with hashed_password=None.

    student_id / faculty_id are assigned once by the store on create and are
    never regenerated, even if the role changes later.

    session_stamp is a random value fixed at creation. Session tokens carry
    it, so a token for a deleted account never matches a later account that
    happens to receive the same id.
    """

    name: str
    email: str
    role: Role
    department: Department
    id: int | None = None
    hashed_password: str | None = None
    semester: int | None = None  # required iff role == student
    student_id: str | None = None
    faculty_id: str | None = None
    bio: str = ""
    profile_image: str = ""
    is_active: bool = True
    is_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None
    session_stamp: str = ""

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.super_admin


@dataclass
class EphemeralToken:
    """A stored single-use capability.

    Only token_hash is persisted -- the raw value is handed to the caller once
    by EphemeralTokenStore.issue() and is unrecoverable afterwards.
    expires_at is a UTC epoch timestamp in seconds.
    """

    user_id: int
    kind: TokenKind
    token_hash: str
    expires_at: float
    id: int | None = None
    used: bool = False
    created_at: str | None = None


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token. A point-in-time snapshot."""

    user_id: int
    role: str
    issued_at: int
    expires_at: int
    stamp: str = ""
