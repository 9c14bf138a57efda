"""
auth/tokens.py -- Session JWTs, single-use token hashing, and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, role, the account stamp, issued-at and expiry. Nothing is
       persisted server side, so logout is a client-side discard and
       rotating SECRET_KEY invalidates every outstanding token at once.

       verify() raises a typed SessionTokenError instead of returning None so
       tests and logs can tell an expired token from a forged one. The gate
       still maps every variant to the same 401.

  Single-use tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. We
       store HMAC-SHA256(SECRET_KEY, raw) so lookup is O(1) via an index.
       bcrypt's intentional slowness is unnecessary for high-entropy values.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import SessionTokenExpired, SessionTokenInvalid, SessionTokenMalformed
from auth.models import Role, SessionClaims, User

_ALGORITHM = "HS256"

AUTH_COOKIE_NAME = "access_token"


class SessionTokens:
    """Issues and verifies stateless bearer tokens.

    Usage:
        tokens = SessionTokens(secret_key, default_ttl=3600)
        token = tokens.issue_for(user)
        claims = tokens.verify(token)   # SessionClaims(user_id=user.id, role=..., stamp=...)
    """

    def __init__(self, secret_key: str, default_ttl: int = 3600) -> None:
        self._secret_key = secret_key
        self.default_ttl = default_ttl

    def issue(self, user_id: int, role: Role | str, ttl: int | None = None, stamp: str = "") -> str:
        """Encode a signed JWT for user_id / role.

        ttl defaults to the configured session lifetime. The role claim is a
        snapshot; the gate re-reads the live role on every request. stamp
        binds the token to one account: the gate rejects it when the stored
        session_stamp differs.
        """
        duration = self.default_ttl if ttl is None else ttl
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "role": Role(role).value,
            "stamp": stamp,
            "iat": now,
            "exp": now + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def issue_for(self, user: User, ttl: int | None = None) -> str:
        """Issue a session token bound to a stored identity."""
        return self.issue(user.id, user.role, ttl=ttl, stamp=user.session_stamp)

    def verify(self, token: str) -> SessionClaims:
        """Decode and verify a JWT.

        Raises:
            SessionTokenExpired:   signature valid, exp in the past.
            SessionTokenMalformed: not a JWT, bad signature, or other secret.
            SessionTokenInvalid:   well signed but user_id / role unusable.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise SessionTokenExpired("Session token has expired.") from exc
        except JWTError as exc:
            raise SessionTokenMalformed("Session token is malformed.") from exc

        user_id = payload.get("user_id")
        role = payload.get("role")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise SessionTokenInvalid("Session token has no usable user_id claim.")
        if role not in {r.value for r in Role}:
            raise SessionTokenInvalid("Session token has no usable role claim.")
        stamp = payload.get("stamp", "")
        if not isinstance(stamp, str):
            raise SessionTokenInvalid("Session token has no usable stamp claim.")
        return SessionClaims(
            user_id=user_id,
            role=role,
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
            stamp=stamp,
        )


# ---------------------------------------------------------------------------
# Single-use token values
# ---------------------------------------------------------------------------


def generate_token_value() -> str:
    """Return a fresh URL-safe random token (256 bits of entropy)."""
    return secrets.token_urlsafe(32)


def hash_token_value(secret_key: str, raw: str) -> str:
    """Return HMAC-SHA256(secret_key, raw) as a hex string.

    Deterministic so the store can look a token up by hash. An attacker who
    obtains the DB cannot recompute hashes for guessed values without the key.
    """
    return hmac.new(secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, max_age: int, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    max_age: matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )
