"""
tests/test_auth_api.py -- Integration tests for /api/auth/*.

Covers:
  - register: 201, camelCase body, generated studentId, no password field
  - register: duplicate email, admin self-registration, body validation -> 400
  - register: standard addresses such as o'brien@x.edu pass; name and password
    limits match the account rules (3-50 chars, 6+ chars)
  - login: token + refresh token + cookie; identical 401 for unknown email / bad password
  - me: bearer header and cookie; missing / garbage token -> 401
  - logout clears the cookie
  - update-profile, change-password
  - verify-email, forgot/reset-password, refresh rotation
  - error envelope shape and Cache-Control: no-store
"""

from __future__ import annotations

import re

import pytest

from conftest import unique_email


@pytest.fixture(autouse=True)
def _fresh_cookies(api):
    """The module-scoped client keeps a cookie jar; start every test signed out."""
    api.client.cookies.clear()
    yield
    api.client.cookies.clear()


def _register(client, email: str, role: str = "student", semester: int | None = 3, password: str = "secret1"):
    body = {"name": "Test User", "email": email, "password": password, "role": role, "department": "CSE"}
    if semester is not None:
        body["semester"] = semester
    return client.post("/api/auth/register", json=body)


def _login(client, email: str, password: str = "secret1"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def _assert_error(resp, status: int, code: str) -> dict:
    assert resp.status_code == status, resp.text
    data = resp.json()
    assert data["success"] is False
    assert data["error"]["code"] == code
    assert data["message"] == data["error"]["message"]
    return data


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_register_student(api):
    resp = api.client.post(
        "/api/auth/register",
        json={
            "name": "Ann Lee",
            "email": "ann@x.edu",
            "password": "secret1",
            "role": "student",
            "department": "CSE",
            "semester": 3,
        },
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    assert data["success"] is True
    assert data["token"]
    assert data["refreshToken"]
    user = data["user"]
    assert user["email"] == "ann@x.edu"
    assert user["role"] == "student"
    assert user["semester"] == 3
    assert re.fullmatch(r"STU\d{6}", user["studentId"])
    assert user["facultyId"] is None
    assert user["isActive"] is True
    assert user["isVerified"] is False
    assert not any("password" in key.lower() for key in user)
    assert resp.headers["cache-control"] == "no-store"
    assert "access_token=" in resp.headers["set-cookie"]


def test_register_faculty(api):
    resp = _register(api.client, unique_email("fac"), role="faculty", semester=None)
    assert resp.status_code == 201, resp.text
    assert re.fullmatch(r"FAC\d{3}", resp.json()["user"]["facultyId"])


def test_register_duplicate_email(api):
    email = unique_email("dup")
    assert _register(api.client, email).status_code == 201
    _assert_error(_register(api.client, email.upper()), 400, "duplicate_email")


@pytest.mark.parametrize("role", ["admin", "super_admin"])
def test_register_admin_roles_rejected(api, role):
    _assert_error(_register(api.client, unique_email("sneaky"), role=role, semester=None), 400, "validation_error")


def test_register_student_requires_semester(api):
    _assert_error(_register(api.client, unique_email("nosem"), semester=None), 400, "validation_error")


def test_register_body_validation(api):
    resp = api.client.post("/api/auth/register", json={"email": unique_email(), "password": "secret1"})
    _assert_error(resp, 400, "validation_error")
    resp = api.client.post(
        "/api/auth/register",
        json={"name": "Test User", "email": unique_email(), "password": "secret1", "role": "student",
              "department": "ART", "semester": 1},
    )
    _assert_error(resp, 400, "validation_error")


def test_register_accepts_apostrophe_email(api):
    email = f"o'brien-{unique_email()}"
    resp = _register(api.client, email)
    assert resp.status_code == 201, resp.text
    assert resp.json()["user"]["email"] == email
    api.client.cookies.clear()
    assert _login(api.client, email).status_code == 200


@pytest.mark.parametrize(
    "overrides",
    [{"name": "Al"}, {"name": "x" * 51}, {"password": "12345"}, {"email": "not-an-email"}],
)
def test_register_field_limits(api, overrides):
    body = {"name": "Test User", "email": unique_email("limits"), "password": "secret1", "role": "student",
            "department": "CSE", "semester": 1}
    body.update(overrides)
    _assert_error(api.client.post("/api/auth/register", json=body), 400, "validation_error")


# ---------------------------------------------------------------------------
# Login / session
# ---------------------------------------------------------------------------


def test_login_returns_token_and_cookie(api):
    email = unique_email("login")
    _register(api.client, email)
    api.client.cookies.clear()

    resp = _login(api.client, email.upper())
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["token"]
    assert data["refreshToken"]
    assert data["user"]["lastLogin"]
    assert resp.headers["cache-control"] == "no-store"
    assert "httponly" in resp.headers["set-cookie"].lower()


def test_login_failures_are_indistinguishable(api):
    email = unique_email("victim")
    _register(api.client, email)
    wrong_password = _assert_error(_login(api.client, email, "wrong-password"), 401, "invalid_credentials")
    unknown_email = _assert_error(_login(api.client, unique_email("ghost")), 401, "invalid_credentials")
    assert wrong_password == unknown_email


def test_me_with_bearer(api):
    email = unique_email("me")
    token = _register(api.client, email).json()["token"]
    api.client.cookies.clear()
    resp = api.client.get("/api/auth/me", headers=api.auth(token))
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == email


def test_me_with_cookie(api):
    email = unique_email("cookie")
    _register(api.client, email)
    resp = api.client.get("/api/auth/me")
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == email


def test_me_without_token(api):
    _assert_error(api.client.get("/api/auth/me"), 401, "unauthenticated")


def test_me_with_garbage_token(api):
    _assert_error(api.client.get("/api/auth/me", headers=api.auth("not.a.token")), 401, "unauthenticated")


def test_me_with_expired_token(api):
    expired = api.accounts.session_tokens.issue_for(api.admin, ttl=-10)
    _assert_error(api.client.get("/api/auth/me", headers=api.auth(expired)), 401, "unauthenticated")


def test_logout_clears_cookie(api):
    _register(api.client, unique_email("bye"))
    assert api.client.get("/api/auth/me").status_code == 200

    resp = api.client.post("/api/auth/logout")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Logged out successfully"
    assert "Max-Age=0" in resp.headers["set-cookie"]

    api.client.cookies.clear()
    assert api.client.get("/api/auth/me").status_code == 401


def test_logout_requires_auth(api):
    _assert_error(api.client.post("/api/auth/logout"), 401, "unauthenticated")


# ---------------------------------------------------------------------------
# Profile / password
# ---------------------------------------------------------------------------


def test_update_profile(api):
    token = _register(api.client, unique_email("profile")).json()["token"]
    resp = api.client.put(
        "/api/auth/update-profile",
        json={"bio": "Hello there", "semester": 5, "profileImage": "/img/me.png"},
        headers=api.auth(token),
    )
    assert resp.status_code == 200, resp.text
    user = resp.json()["user"]
    assert user["bio"] == "Hello there"
    assert user["semester"] == 5
    assert user["profileImage"] == "/img/me.png"
    assert user["name"] == "Test User"


def test_update_profile_semester_ignored_for_faculty(api):
    token = _register(api.client, unique_email("facprof"), role="faculty", semester=None).json()["token"]
    resp = api.client.put("/api/auth/update-profile", json={"semester": 4}, headers=api.auth(token))
    assert resp.status_code == 200
    assert resp.json()["user"]["semester"] is None


@pytest.mark.parametrize("name", ["x", "y" * 51])
def test_update_profile_name_limits(api, name):
    token = _register(api.client, unique_email("shortname")).json()["token"]
    resp = api.client.put("/api/auth/update-profile", json={"name": name}, headers=api.auth(token))
    _assert_error(resp, 400, "validation_error")


def test_change_password(api):
    email = unique_email("chpw")
    token = _register(api.client, email).json()["token"]

    bad = api.client.put(
        "/api/auth/change-password",
        json={"currentPassword": "nope-nope", "newPassword": "newsecret1"},
        headers=api.auth(token),
    )
    _assert_error(bad, 401, "invalid_credentials")

    resp = api.client.put(
        "/api/auth/change-password",
        json={"currentPassword": "secret1", "newPassword": "newsecret1"},
        headers=api.auth(token),
    )
    assert resp.status_code == 200, resp.text
    assert _login(api.client, email, "secret1").status_code == 401
    assert _login(api.client, email, "newsecret1").status_code == 200


# ---------------------------------------------------------------------------
# Single-use token flows
# ---------------------------------------------------------------------------


def test_verify_email_flow(api):
    token = _register(api.client, unique_email("verify")).json()["token"]
    issued = api.client.post("/api/auth/verify-email/request", headers=api.auth(token))
    assert issued.status_code == 200
    raw = issued.json()["token"]
    assert raw

    resp = api.client.post("/api/auth/verify-email", json={"token": raw})
    assert resp.status_code == 200, resp.text
    assert resp.json()["user"]["isVerified"] is True

    _assert_error(api.client.post("/api/auth/verify-email", json={"token": raw}), 400, "token_already_used")


def test_verify_email_unknown_token(api):
    _assert_error(api.client.post("/api/auth/verify-email", json={"token": "nope"}), 400, "token_not_found")


def test_forgot_and_reset_password(api):
    email = unique_email("forgot")
    _register(api.client, email)

    resp = api.client.post("/api/auth/forgot-password", json={"email": email})
    assert resp.status_code == 200
    raw = resp.json()["token"]
    assert raw

    reset = api.client.post("/api/auth/reset-password", json={"token": raw, "password": "brandnew1"})
    assert reset.status_code == 200, reset.text
    assert _login(api.client, email, "brandnew1").status_code == 200

    replay = api.client.post("/api/auth/reset-password", json={"token": raw, "password": "another1"})
    _assert_error(replay, 400, "token_already_used")


def test_forgot_password_unknown_email_looks_the_same(api):
    known = unique_email("known")
    _register(api.client, known)
    a = api.client.post("/api/auth/forgot-password", json={"email": known}).json()
    b = api.client.post("/api/auth/forgot-password", json={"email": unique_email("unknown")}).json()
    assert a["message"] == b["message"]
    assert b["token"] is None


def test_refresh_rotation(api):
    refresh_token = _register(api.client, unique_email("refresh")).json()["refreshToken"]

    resp = api.client.post("/api/auth/refresh", json={"refreshToken": refresh_token})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["token"]
    assert data["refreshToken"] != refresh_token

    replay = api.client.post("/api/auth/refresh", json={"refreshToken": refresh_token})
    _assert_error(replay, 400, "token_already_used")
    assert api.client.post("/api/auth/refresh", json={"refreshToken": data["refreshToken"]}).status_code == 200


def test_unknown_route_uses_error_envelope(api):
    data = _assert_error(api.client.get("/api/does-not-exist"), 404, "http_404")
    assert data["error"]["message"] == "Not Found"
