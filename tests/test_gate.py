"""Unit tests for auth/gate.py -- authentication and role policy.

Covers:
- authenticate(): missing / malformed / expired tokens and vanished users -> Unauthenticated
- authenticate(): deactivation locks out an already-issued token immediately
- authenticate(): a deleted user's token never resolves to a later account (id reuse, stamp mismatch)
- authenticate(): the live role wins over the token's role claim
- authorize(): Forbidden outside the allowed set
- ensure_can_assign_role(): only super_admin grants admin; super_admin is immutable
- ensure_can_manage(): super_admin immune, no self-toggle / self-delete
"""

import pytest

from auth.errors import AccountDeactivated, Forbidden, Unauthenticated
from auth.gate import authenticate, authorize, ensure_can_assign_role, ensure_can_manage
from auth.models import ADMIN_ROLES, Role
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import SessionTokens

from conftest import make_user


class TestAuthenticate:
    def test_valid_token_resolves_live_user(
        self, user_store: UserStore, session_tokens: SessionTokens, hasher: PasswordHasher
    ) -> None:
        user = make_user(user_store, hasher)
        resolved = authenticate(session_tokens.issue_for(user), session_tokens, user_store)
        assert resolved.id == user.id
        assert resolved.hashed_password is None

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_missing_or_malformed_token(
        self, user_store: UserStore, session_tokens: SessionTokens, token
    ) -> None:
        with pytest.raises(Unauthenticated):
            authenticate(token, session_tokens, user_store)

    def test_expired_token(self, user_store: UserStore, session_tokens: SessionTokens, hasher: PasswordHasher) -> None:
        user = make_user(user_store, hasher)
        with pytest.raises(Unauthenticated):
            authenticate(session_tokens.issue_for(user, ttl=-5), session_tokens, user_store)

    def test_deleted_user(self, user_store: UserStore, session_tokens: SessionTokens, hasher: PasswordHasher) -> None:
        user = make_user(user_store, hasher)
        token = session_tokens.issue_for(user)
        user_store.delete_user(user.id)
        with pytest.raises(Unauthenticated):
            authenticate(token, session_tokens, user_store)

    def test_deactivation_locks_out_existing_token(
        self, user_store: UserStore, session_tokens: SessionTokens, hasher: PasswordHasher
    ) -> None:
        user = make_user(user_store, hasher)
        token = session_tokens.issue_for(user)
        assert authenticate(token, session_tokens, user_store).id == user.id

        user_store.toggle_active(user.id)
        with pytest.raises(AccountDeactivated):
            authenticate(token, session_tokens, user_store)

    def test_token_of_deleted_user_never_resolves_to_newcomer(
        self, user_store: UserStore, session_tokens: SessionTokens, hasher: PasswordHasher
    ) -> None:
        make_user(user_store, hasher, role=Role.admin)
        departed = make_user(user_store, hasher)
        token = session_tokens.issue_for(departed)
        assert user_store.delete_user(departed.id)

        newcomer = make_user(user_store, hasher, role=Role.faculty)
        assert newcomer.id != departed.id
        with pytest.raises(Unauthenticated):
            authenticate(token, session_tokens, user_store)
        assert authenticate(session_tokens.issue_for(newcomer), session_tokens, user_store).id == newcomer.id

    def test_token_with_foreign_stamp_rejected(
        self, user_store: UserStore, session_tokens: SessionTokens, hasher: PasswordHasher
    ) -> None:
        user = make_user(user_store, hasher)
        other = make_user(user_store, hasher)
        assert user.session_stamp and user.session_stamp != other.session_stamp
        for stamp in ("", other.session_stamp, "é" * 32):
            token = session_tokens.issue(user.id, user.role, stamp=stamp)
            with pytest.raises(Unauthenticated):
                authenticate(token, session_tokens, user_store)

    def test_live_role_overrides_token_claim(
        self, user_store: UserStore, session_tokens: SessionTokens, hasher: PasswordHasher
    ) -> None:
        admin = make_user(user_store, hasher, role=Role.admin)
        token = session_tokens.issue_for(admin)
        user_store.change_role(admin.id, Role.faculty)

        resolved = authenticate(token, session_tokens, user_store)
        assert resolved.role == Role.faculty
        with pytest.raises(Forbidden):
            authorize(resolved, ADMIN_ROLES)


class TestAuthorize:
    @pytest.mark.parametrize("role", [Role.admin, Role.super_admin])
    def test_admin_roles_pass_admin_gate(self, user_store: UserStore, hasher: PasswordHasher, role: Role) -> None:
        user = make_user(user_store, hasher, role=role)
        assert authorize(user, ADMIN_ROLES) is user

    @pytest.mark.parametrize("role", [Role.student, Role.faculty])
    def test_other_roles_forbidden(self, user_store: UserStore, hasher: PasswordHasher, role: Role) -> None:
        user = make_user(user_store, hasher, role=role)
        with pytest.raises(Forbidden):
            authorize(user, ADMIN_ROLES)

    def test_accepts_role_strings(self, user_store: UserStore, hasher: PasswordHasher) -> None:
        user = make_user(user_store, hasher, role=Role.faculty)
        assert authorize(user, ["faculty", "admin"]) is user


class TestRolePolicy:
    def test_only_super_admin_grants_admin(self, user_store: UserStore, hasher: PasswordHasher) -> None:
        super_admin = make_user(user_store, hasher, role=Role.super_admin)
        admin = make_user(user_store, hasher, role=Role.admin)
        target = make_user(user_store, hasher, role=Role.faculty)

        ensure_can_assign_role(super_admin, target, Role.admin)
        with pytest.raises(Forbidden):
            ensure_can_assign_role(admin, target, Role.admin)
        with pytest.raises(Forbidden):
            ensure_can_assign_role(admin, target, Role.super_admin)

    def test_admin_may_assign_non_admin_roles(self, user_store: UserStore, hasher: PasswordHasher) -> None:
        admin = make_user(user_store, hasher, role=Role.admin)
        target = make_user(user_store, hasher, role=Role.student)
        ensure_can_assign_role(admin, target, Role.faculty)

    def test_super_admin_role_is_immutable(self, user_store: UserStore, hasher: PasswordHasher) -> None:
        super_admin = make_user(user_store, hasher, role=Role.super_admin)
        other_super = make_user(user_store, hasher, role=Role.super_admin)
        with pytest.raises(Forbidden):
            ensure_can_assign_role(super_admin, other_super, Role.student)

    def test_super_admin_cannot_be_managed(self, user_store: UserStore, hasher: PasswordHasher) -> None:
        admin = make_user(user_store, hasher, role=Role.admin)
        super_admin = make_user(user_store, hasher, role=Role.super_admin)
        for action in ("suspend", "delete"):
            with pytest.raises(Forbidden):
                ensure_can_manage(admin, super_admin, action)

    def test_no_self_management(self, user_store: UserStore, hasher: PasswordHasher) -> None:
        admin = make_user(user_store, hasher, role=Role.admin)
        with pytest.raises(Forbidden):
            ensure_can_manage(admin, admin, "suspend")

    def test_admin_can_manage_regular_users(self, user_store: UserStore, hasher: PasswordHasher) -> None:
        admin = make_user(user_store, hasher, role=Role.admin)
        student = make_user(user_store, hasher, role=Role.student)
        ensure_can_manage(admin, student, "delete")
