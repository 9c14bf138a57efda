"""
auth/passwords.py -- bcrypt password hashing behind a small swappable class.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt.gensalt() draws a fresh random salt on every call, so hashing the same
plaintext twice gives two different strings; checkpw() accepts both.
checkpw() compares the full digest, there is no early exit on the first
mismatching byte.
"""

from __future__ import annotations

import bcrypt

# bcrypt only looks at the first 72 bytes. The API layer caps password input
# well above that (1024 chars) so we truncate explicitly instead of letting
# bcrypt 4.x raise on long inputs.
_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """One-way salted password hashing.

    Usage:
        hasher = PasswordHasher(rounds=10)
        hashed = hasher.hash("secret1")
        hasher.verify("secret1", hashed)   # True
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Computed once so that a login for an unknown email still pays the
        # full bcrypt cost. See dummy_verify().
        self._dummy_hash = self.hash("resourcehub_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A missing or malformed stored hash is a mismatch, never an exception.
        """
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError:
            return False

    def dummy_verify(self, plain: str) -> None:
        """Burn the same CPU time as a real verify() when there is no user to check."""
        self.verify(plain, self._dummy_hash)
