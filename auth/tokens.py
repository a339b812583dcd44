"""
auth/tokens.py -- Stateless access/refresh JWT issuance and verification.

Security design decisions:
  JWT: python-jose with HS256 by default. Access and refresh tokens are signed
       with separate secrets (REFRESH_TOKEN_SECRET may equal ACCESS_TOKEN_SECRET)
       and carry a "type" claim so one can never stand in for the other.

  Stateless refresh: no server-side record of issued tokens exists. A token is
       valid iff its signature verifies and it has not expired. This trades
       instant revocation for a refresh path with no database blacklist check.
       Logout therefore only tells the client to drop its tokens.

  Explicit configuration: TokenIssuer receives its secrets, algorithm and TTLs
       at construction (see TokenIssuer.from_settings). Nothing in this module
       reads the environment.

  Clock: expiry is checked against the issuer's injectable clock rather than
       python-jose's wall-clock check, so issue() and verify() always agree on
       what "now" is.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import TokenBadSignature, TokenExpired, TokenMalformed
from auth.models import Identity, Session, TokenClaims

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("credcore.auth")

ACCESS = "access"
REFRESH = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mints and verifies signed, stateless access/refresh tokens.

    Usage:
        issuer = TokenIssuer(access_secret="...", refresh_secret="...")
        session = issuer.issue(identity)
        claims = issuer.verify(session.access_token)
        claims = issuer.verify(session.refresh_token, token_type="refresh")
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str | None = None,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not access_secret:
            raise ValueError("access_secret is required")
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret or access_secret}
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self.algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> TokenIssuer:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            algorithm=settings.jwt_algorithm,
            access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
            clock=clock,
        )

    @property
    def access_ttl(self) -> timedelta:
        return self._ttls[ACCESS]

    @property
    def refresh_ttl(self) -> timedelta:
        return self._ttls[REFRESH]

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, identity: Identity, role: str | None = None) -> Session:
        """Sign an access token and a refresh token for identity.

        Both carry {sub, email}; they differ in secret, expiry window and the
        "type" claim. role is optional and only echoed back in the claims.
        """
        if identity.id is None:
            raise ValueError("identity must be persisted before tokens are issued")
        return Session(
            access_token=self._encode(identity, ACCESS, role),
            refresh_token=self._encode(identity, REFRESH, role),
            expires_in=int(self.access_ttl.total_seconds()),
        )

    def _encode(self, identity: Identity, token_type: str, role: str | None) -> str:
        now = self._clock()
        payload = {
            "sub": str(identity.id),
            "email": identity.email,
            "iat": now,
            "exp": now + self._ttls[token_type],
            "type": token_type,
        }
        if role is not None:
            payload["role"] = role
        return jwt.encode(payload, self._secrets[token_type], algorithm=self.algorithm)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, token_type: str = ACCESS) -> TokenClaims:
        """Check signature and expiry of token and return its claims.

        Raises:
            TokenMalformed:    not a JWT, missing claims, or the wrong "type".
            TokenBadSignature: signature does not verify under the expected secret.
            TokenExpired:      the issuer clock is at or past "exp".
        """
        if token_type not in self._secrets:
            raise ValueError(f"unknown token type: {token_type!r}")
        if not token:
            raise TokenMalformed("Missing token.")

        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc

        try:
            payload = jwt.decode(
                token,
                self._secrets[token_type],
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            # Signature verified; a registered claim (iat, aud, ...) is invalid.
            raise TokenMalformed() from exc
        except JWTError as exc:
            raise TokenBadSignature() from exc

        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
            raise TokenMalformed()
        if "sub" not in payload or "email" not in payload:
            raise TokenMalformed()
        if payload.get("type") != token_type:
            raise TokenMalformed(f"Expected a {token_type} token.")

        if self._clock().timestamp() >= exp:
            raise TokenExpired()

        return TokenClaims(
            subject=str(payload["sub"]),
            email=payload["email"],
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            token_type=payload["type"],
            role=payload.get("role"),
        )
