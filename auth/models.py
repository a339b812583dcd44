"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Identity:
    """A registered account.

    wallet_nonce is embedded in the wallet-link challenge and rotated after
    every link attempt whose signature recovers cleanly, so a signed challenge
    can never be replayed.

    refresh_token_hash is kept for stores that want to pin a refresh token.
    The stateless token flow never reads it.
    """

    email: str
    password_hash: str
    wallet_nonce: str
    id: int | None = None
    wallet_address: str | None = None
    profile: dict = field(default_factory=dict)
    refresh_token_hash: str | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class OtpRecord:
    """A one-time passcode. Deleted on first verification or on expiry detection."""

    email: str
    code: str
    expires_at: datetime  # timezone-aware UTC
    id: int | None = None


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    email: str
    issued_at: datetime
    expires_at: datetime
    token_type: str  # "access" or "refresh"
    role: str | None = None


@dataclass(frozen=True)
class Session:
    """The {access_token, refresh_token} pair returned on authentication."""

    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password


@dataclass(frozen=True)
class WalletLinkProof:
    challenge_message: str
    signature: str
    claimed_address: str
