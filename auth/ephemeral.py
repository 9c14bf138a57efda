"""
auth/ephemeral.py -- Single-use, expiring tokens (email verification, password
reset, refresh) backed by SQLAlchemy Core.

Security design:
  The raw token value is returned ONCE by issue() and never persisted. The
  table stores HMAC-SHA256(SECRET_KEY, raw) so a DB leak does not leak usable
  tokens.

Consume-once:
  consume() marks the row used with a single conditional UPDATE

      UPDATE ephemeral_tokens SET used = 1
      WHERE token_hash = :h AND kind = :k AND used = 0 AND expires_at > :now

  and succeeds only when that statement reports rowcount == 1. The database
  serializes the write, so of N concurrent consumers of the same value exactly
  one wins and the rest see used = 1. There is no read-then-write window.

Expiry:
  expires_at is a UTC epoch float. Expired rows are rejected lazily by
  consume(); purge_expired() deletes them and is run periodically by the API
  lifespan. Used rows are kept until they expire so a replay reports
  TokenAlreadyUsed rather than TokenNotFound.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Index, Integer, MetaData, String, Table, UniqueConstraint, select
from sqlalchemy.engine import Engine

from auth.errors import TokenAlreadyUsed, TokenExpired, TokenNotFound
from auth.models import EphemeralToken, TokenKind
from auth.store import make_engine
from auth.tokens import generate_token_value, hash_token_value

logger = logging.getLogger("resourcehub.auth.ephemeral")

DEFAULT_TTLS: dict[TokenKind, int] = {
    TokenKind.verification: 24 * 60 * 60,
    TokenKind.password_reset: 60 * 60,
    TokenKind.refresh: 7 * 24 * 60 * 60,
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_tokens = Table(
    "ephemeral_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("kind", String(20), nullable=False),
    Column("token_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("expires_at", Float, nullable=False),  # UTC epoch seconds
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("token_hash", "kind", name="uq_ephemeral_tokens_hash_kind"),
    Index("ix_ephemeral_tokens_user_kind", "user_id", "kind"),
)


class EphemeralTokenStore:
    """Repository for single-use tokens.

    Usage:
        tokens = EphemeralTokenStore(db_url, secret_key)
        raw = tokens.issue(user_id, TokenKind.password_reset)   # mail this to the user
        tokens.consume(raw, TokenKind.password_reset)           # -> user_id, once

    clock returns the current UTC epoch time in seconds. Tests inject a fake
    clock to move past expiry without sleeping.
    """

    def __init__(
        self,
        db_url: str,
        secret_key: str,
        timeout: float = 5.0,
        ttls: Mapping[TokenKind, int] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        self._secret_key = secret_key
        self._ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._clock = clock
        _metadata.create_all(self.engine)

    def issue(
        self,
        user_id: int,
        kind: TokenKind,
        ttl: int | None = None,
        invalidate_previous: bool = False,
    ) -> str:
        """Create a token and return its raw value. This is the only chance to obtain it.

        With invalidate_previous=True every earlier unused token of the same
        kind for the same user is marked used in the same transaction, so only
        the newest token is valid.
        """
        kind = TokenKind(kind)
        raw = generate_token_value()
        now = self._clock()
        expires_at = now + (self._ttls[kind] if ttl is None else ttl)
        with self.engine.begin() as conn:
            if invalidate_previous:
                conn.execute(
                    _tokens.update()
                    .where((_tokens.c.user_id == user_id) & (_tokens.c.kind == kind.value) & (_tokens.c.used == 0))
                    .values(used=1)
                )
            conn.execute(
                _tokens.insert().values(
                    user_id=user_id,
                    kind=kind.value,
                    token_hash=hash_token_value(self._secret_key, raw),
                    expires_at=expires_at,
                    used=0,
                    created_at=datetime.fromtimestamp(now, timezone.utc).isoformat(),
                )
            )
        return raw

    def consume(self, raw: str, kind: TokenKind) -> int:
        """Atomically mark a token used and return its owner's user_id.

        Raises:
            TokenNotFound:     no token of this kind with this value.
            TokenAlreadyUsed:  consumed (or invalidated) before.
            TokenExpired:      unused but past its expiry.
        """
        kind = TokenKind(kind)
        token_hash = hash_token_value(self._secret_key, raw)
        match = (_tokens.c.token_hash == token_hash) & (_tokens.c.kind == kind.value)
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.update().where(match & (_tokens.c.used == 0) & (_tokens.c.expires_at > now)).values(used=1)
            )
            if result.rowcount == 1:
                return conn.execute(select(_tokens.c.user_id).where(match)).scalar_one()
            row = conn.execute(select(_tokens.c.used, _tokens.c.expires_at).where(match)).fetchone()

        if row is None:
            raise TokenNotFound()
        if row.used:
            raise TokenAlreadyUsed()
        raise TokenExpired()

    def invalidate_all(self, user_id: int, kind: TokenKind) -> int:
        """Mark every unused token of this kind for this user as used. Returns the count."""
        kind = TokenKind(kind)
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.update()
                .where((_tokens.c.user_id == user_id) & (_tokens.c.kind == kind.value) & (_tokens.c.used == 0))
                .values(used=1)
            )
        return result.rowcount

    def delete_for_user(self, user_id: int) -> int:
        """Remove every token owned by user_id (account deletion)."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.user_id == user_id))
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all tokens past their expiry. Returns number of rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires_at <= self._clock()))
        if result.rowcount:
            logger.info("Purged %d expired single-use tokens", result.rowcount)
        return result.rowcount

    def list_for_user(self, user_id: int, kind: TokenKind | None = None) -> list[EphemeralToken]:
        """Return stored token records for a user, newest first. Hashes only."""
        query = _tokens.select().where(_tokens.c.user_id == user_id)
        if kind is not None:
            query = query.where(_tokens.c.kind == TokenKind(kind).value)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_tokens.c.id.desc())).fetchall()
        return [_row_to_token(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_token(row) -> EphemeralToken:
    return EphemeralToken(
        id=row.id,
        user_id=row.user_id,
        kind=TokenKind(row.kind),
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        used=bool(row.used),
        created_at=row.created_at,
    )
