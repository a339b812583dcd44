"""
auth/passwords.py -- Password hashing and verification.

Passwords: bcrypt used directly (no passlib wrapper). passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects,
so the library is called without a compatibility shim.

PasswordVerifier is the only thing AuthService uses to check a password. It
never raises for a mismatch or a corrupt stored hash -- it returns False.

Timing equalization: every hasher computes a dummy hash at construction with
its own cost factor. AuthService.validate_credentials() calls
PasswordVerifier.verify_dummy() when the email is unknown so that response
time does not reveal whether an account exists.
"""

from __future__ import annotations

import bcrypt

from auth.interfaces import PasswordHasher

_DUMMY_PASSWORD = "credcore_timing_dummy"  # noqa: S105 # nosec B105 -- not a credential


class BcryptPasswordHasher:
    """PasswordHasher backed by bcrypt.

    Passwords longer than 72 bytes are silently truncated by bcrypt (a known
    bcrypt limitation). The API layer caps password length well below that.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self.dummy_hash: str = self.hash(_DUMMY_PASSWORD)

    def hash(self, plaintext: str) -> str:
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def compare(self, plaintext: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            # Corrupt or non-bcrypt stored hash
            return False


class PasswordVerifier:
    def __init__(self, hasher: PasswordHasher) -> None:
        self._hasher = hasher

    def verify(self, plaintext: str, stored_hash: str | None) -> bool:
        """Return True if plaintext matches stored_hash, False otherwise."""
        if not stored_hash:
            return False
        return self._hasher.compare(plaintext, stored_hash)

    def verify_dummy(self, plaintext: str) -> None:
        """Spend one hash comparison without a real target (timing equalization)."""
        dummy = getattr(self._hasher, "dummy_hash", None)
        if dummy:
            self._hasher.compare(plaintext, dummy)

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)
