"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper.
Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Password hashes are opt-in: every read returns hashed_password=None unless
  the caller passes include_password=True. Only the login and
  change-password paths ask for it.

Invariants enforced here rather than left to the schema:
  - email is unique case-insensitively. The column holds the lowercased
    address and carries a UNIQUE constraint, so two concurrent registrations
    for the same address race on the constraint, not on a read-then-write.
  - semester is present iff role == student. Checked on insert; later
    writes derive it from the role column in the same statement.
  - student_id / faculty_id are assigned on insert and never written again.
  - ids are never reused (AUTOINCREMENT on SQLite), and every row carries a
    random session_stamp, so a token for a deleted user cannot resolve to
    a later account.

Writes after creation are targeted: each UPDATE touches only its own
columns and carries its guards (e.g. role != super_admin) in the WHERE
clause. No method writes back a whole row read earlier, so a suspension
cannot be undone by a concurrent profile edit.

Every write runs inside engine.begin(): the row is either fully committed or
not there at all.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, case, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmail, Internal, NotFound, ValidationError
from auth.models import Department, Role, User

logger = logging.getLogger("resourcehub.auth.store")

# Attempts at drawing an unused student/faculty ID before giving up.
_MEMBER_ID_ATTEMPTS = 5

SEMESTER_MIN = 1
SEMESTER_MAX = 12

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # always lowercased
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False),
    Column("department", String(20), nullable=False),
    Column("semester", Integer),  # NULL unless role == student
    Column("student_id", String(16), unique=True),  # NULLs are distinct
    Column("faculty_id", String(16), unique=True),
    Column("bio", String(500), nullable=False, server_default=""),
    Column("profile_image", Text, nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("session_stamp", String(32), nullable=False),
    # Never hand a deleted user's id to a new account.
    sqlite_autoincrement=True,
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float) -> Engine:
    """Create an engine whose lock / checkout waits are bounded by timeout seconds.

    SQLite: timeout becomes the driver's busy timeout, so a writer blocked by
    another writer fails after timeout seconds instead of hanging.
    Other backends: timeout bounds the wait for a pooled connection.
    """
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": timeout})
        event.listen(engine, "connect", _set_wal_mode)
        return engine
    return create_engine(db_url, pool_timeout=timeout, pool_pre_ping=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _department(department: Department | str) -> Department:
    try:
        return Department(department)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _check_semester(semester: int) -> None:
    if not SEMESTER_MIN <= semester <= SEMESTER_MAX:
        raise ValidationError(f"Semester must be between {SEMESTER_MIN} and {SEMESTER_MAX}.")


def check_role_fields(user: User) -> None:
    """Raise ValidationError unless the role-conditional fields are consistent.

    semester is required for students and forbidden for every other role.
    """
    role = _role(user.role)
    _department(user.department)
    if role == Role.student:
        if user.semester is None:
            raise ValidationError("Semester is required for students.")
        _check_semester(user.semester)
    elif user.semester is not None:
        raise ValidationError("Semester should only be specified for students.")


def generate_member_ids(role: Role) -> tuple[str | None, str | None]:
    """Return (student_id, faculty_id) for a new identity of the given role.

    Students:  STU + 2-digit year + 4-digit random, e.g. STU261234.
    Faculty:   FAC + 3-digit random, e.g. FAC417.
    Admin tiers get neither.
    """
    if role == Role.student:
        year = datetime.now(timezone.utc).strftime("%y")
        return f"STU{year}{1000 + secrets.randbelow(9000)}", None
    if role == Role.faculty:
        return None, f"FAC{100 + secrets.randbelow(900)}"
    return None, None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities (the credential store).

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(User(name="Ann Lee", email="ann@x.edu", role=Role.student,
                                      department=Department.CSE, semester=3,
                                      hashed_password=hasher.hash("secret1")))
        store.get_by_email("ANN@x.edu")              # hashed_password is None
        store.get_by_email("ann@x.edu", include_password=True)
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new identity and return it as stored (without the hash).

        Raises:
            ValidationError: role/semester mismatch or missing password hash.
            DuplicateEmail:  the lowercased email already exists.
            Internal:        no free student/faculty ID after several draws.
        """
        check_role_fields(user)
        if not user.hashed_password:
            raise ValidationError("A password hash is required.")

        email = normalize_email(user.email)
        role = Role(user.role)
        now = _now_iso()
        for _ in range(_MEMBER_ID_ATTEMPTS):
            student_id, faculty_id = generate_member_ids(role)
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(
                        _users.insert().values(
                            name=user.name,
                            email=email,
                            hashed_password=user.hashed_password,
                            role=role.value,
                            department=Department(user.department).value,
                            semester=user.semester,
                            student_id=student_id,
                            faculty_id=faculty_id,
                            bio=user.bio,
                            profile_image=user.profile_image,
                            is_active=1 if user.is_active else 0,
                            is_verified=1 if user.is_verified else 0,
                            created_at=now,
                            updated_at=now,
                            last_login=user.last_login,
                            session_stamp=secrets.token_hex(16),
                        )
                    )
                    user_id = result.inserted_primary_key[0]
            except IntegrityError as exc:
                if self._email_exists(email):
                    raise DuplicateEmail() from exc
                # Member ID collision -- draw again.
                logger.info("Member ID collision for role %s, retrying", role.value)
                continue
            created = self.get_by_id(user_id)
            if created is None:
                raise Internal("User not found after write.")
            return created
        raise Internal("Could not allocate a unique member ID.")

    def update_profile(
        self,
        user_id: int,
        name: str | None = None,
        department: Department | str | None = None,
        bio: str | None = None,
        profile_image: str | None = None,
        semester: int | None = None,
    ) -> User:
        """Write only the given profile fields. None means "leave unchanged".

        semester is applied in the same statement only if the row is a
        student at write time, so a concurrent role change cannot leave a
        non-student with a semester. Status, role, email, hash and member IDs
        are never touched here.

        Raises ValidationError or NotFound.
        """
        values: dict[str, Any] = {"updated_at": _now_iso()}
        if name is not None:
            values["name"] = name
        if department is not None:
            values["department"] = _department(department).value
        if bio is not None:
            values["bio"] = bio
        if profile_image is not None:
            values["profile_image"] = profile_image
        if semester is not None:
            _check_semester(semester)
            values["semester"] = case(
                (_users.c.role == Role.student.value, semester),
                else_=_users.c.semester,
            )
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        if result.rowcount == 0:
            raise NotFound()
        return self._get_or_not_found(user_id)

    def toggle_active(self, user_id: int) -> User | None:
        """Flip is_active in one conditional UPDATE and return the result.

        Returns None when no row matched: the user is gone or is a
        super_admin. Two concurrent toggles flip twice; neither is lost.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.role != Role.super_admin.value))
                .values(is_active=1 - _users.c.is_active, updated_at=_now_iso())
            )
        if result.rowcount == 0:
            return None
        return self.get_by_id(user_id)

    def change_role(self, user_id: int, role: Role | str, semester: int | None = None) -> User | None:
        """Set the role and nothing else but the semester it implies.

        Moving to student keeps the semester on record unless a new one is
        given; the result must have one, otherwise ValidationError and the
        transaction rolls back. Moving away clears it. Member IDs are never
        regenerated. Returns None when the user is gone or is a super_admin.
        """
        role = _role(role)
        if semester is not None:
            _check_semester(semester)
        if role != Role.student:
            new_semester = None
        elif semester is not None:
            new_semester = semester
        else:
            new_semester = _users.c.semester
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.role != Role.super_admin.value))
                .values(role=role.value, semester=new_semester, updated_at=_now_iso())
            )
            if result.rowcount == 0:
                return None
            stored = conn.execute(select(_users.c.semester).where(_users.c.id == user_id)).scalar()
            if role == Role.student and stored is None:
                raise ValidationError("Semester is required for students.")
        return self.get_by_id(user_id)

    def mark_verified(self, user_id: int) -> User:
        """Set is_verified. Raises NotFound."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_verified=1, updated_at=_now_iso())
            )
        if result.rowcount == 0:
            raise NotFound()
        return self._get_or_not_found(user_id)

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace the stored hash. Returns False if user_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete an identity. Returns False if nothing was deleted.

        super_admin rows are never deleted; the guard is part of the DELETE
        itself. Self-deletion is the caller's responsibility.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.delete().where((_users.c.id == user_id) & (_users.c.role != Role.super_admin.value))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_email(self, email: str, include_password: bool = False) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row, include_password) if row is not None else None

    def get_by_id(self, user_id: int, include_password: bool = False) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row, include_password) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id, never with password hashes."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def count_by_role(self, role: Role) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == Role(role).value)
            ).scalar()
        return result or 0

    def _get_or_not_found(self, user_id: int) -> User:
        user = self.get_by_id(user_id)
        if user is None:
            raise NotFound()
        return user

    def _email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.email == email)).fetchone()
        return row is not None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row: Any, include_password: bool = False) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password if include_password else None,
        role=Role(row.role),
        department=Department(row.department),
        semester=row.semester,
        student_id=row.student_id,
        faculty_id=row.faculty_id,
        bio=row.bio or "",
        profile_image=row.profile_image or "",
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
        session_stamp=row.session_stamp,
    )
