"""
auth/interfaces.py -- Collaborator contracts consumed by the auth core.

The services in auth/ depend on these Protocols, never on a concrete store,
mailer or crypto library. auth/store.py, auth/notifier.py, auth/passwords.py
and auth/wallet.py ship one implementation of each; tests substitute fakes.

Atomicity contract: OtpStore.consume() must find AND delete a matching record
as one operation. Two concurrent consume() calls for the same (email, code)
must never both return a record. IdentityStore.rotate_nonce() must likewise
only succeed for the caller that still holds the current nonce.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import Identity, OtpRecord


class IdentityStore(Protocol):
    def find_by_email(self, email: str) -> Identity | None: ...

    def find_by_id(self, user_id: int) -> Identity | None: ...

    def create(self, identity: Identity) -> Identity:
        """Persist a new identity. Raises EmailInUse on a duplicate email."""
        ...

    def save(self, identity: Identity) -> Identity: ...

    def rotate_nonce(
        self, user_id: int, expected_nonce: str, new_nonce: str, wallet_address: str | None = None
    ) -> bool:
        """Compare-and-set wallet_nonce. Returns False if expected_nonce is stale."""
        ...

    def update_refresh_token_hash(self, user_id: int, token_hash: str | None) -> None: ...

    def update_last_login(self, user_id: int) -> None: ...


class OtpStore(Protocol):
    def save(self, record: OtpRecord) -> OtpRecord: ...

    def find_by_email_and_code(self, email: str, code: str) -> OtpRecord | None: ...

    def delete(self, email: str, code: str) -> int: ...

    def consume(self, email: str, code: str) -> OtpRecord | None:
        """Atomically remove and return one record matching (email, code)."""
        ...

    def purge_expired(self, now: datetime) -> int: ...


class Notifier(Protocol):
    def send_otp_email(self, email: str, code: str) -> None:
        """Deliver a code. Raises DeliveryFailed or OperationTimeout on failure."""
        ...


class PasswordHasher(Protocol):
    def hash(self, plaintext: str) -> str: ...

    def compare(self, plaintext: str, hashed: str) -> bool: ...


class SignatureRecoverer(Protocol):
    def recover_address(self, message: str, signature: str) -> str:
        """Return the signer address. Raises InvalidSignature on malformed input."""
        ...
