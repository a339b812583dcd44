"""
auth/service.py -- AuthService, the only component that knows every protocol.

AuthService composes PasswordVerifier, TokenIssuer, OtpManager and
WalletLinker over an IdentityStore. It implements the upward surface the
transport layer consumes: register, login, validate_credentials, refresh,
logout, request_otp, verify_otp, link_wallet, wallet_challenge, authenticate.

Error policy: each collaborator raises a typed AuthError where the failure is
detected. AuthService lets those propagate untouched; it never wraps a
classified failure in a more generic one.

Enumeration resistance: validate_credentials() raises InvalidCredentials for
both an unknown email and a wrong password, after spending one bcrypt
comparison in either case. request_otp() raises UserNotFound, which renders
with the same code, status and message as InvalidCredentials.

Emails are normalized (trimmed, lower-cased) on every entry point so that
lookups, OTP records and token claims agree on one spelling.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from auth.errors import EmailInUse, InvalidCredentials, InvalidOrExpiredToken, TokenMalformed
from auth.interfaces import IdentityStore, Notifier, OtpStore, SignatureRecoverer
from auth.models import Identity, Session
from auth.otp import OtpManager
from auth.passwords import BcryptPasswordHasher, PasswordVerifier
from auth.tokens import ACCESS, REFRESH, TokenIssuer
from auth.wallet import EthereumSignatureRecoverer, WalletLinker, generate_nonce
from core.config import Settings

logger = logging.getLogger("credcore.auth")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    def __init__(
        self,
        identities: IdentityStore,
        passwords: PasswordVerifier,
        tokens: TokenIssuer,
        otp: OtpManager,
        wallets: WalletLinker,
        nonce_bytes: int = 32,
    ) -> None:
        self.identities = identities
        self.passwords = passwords
        self.tokens = tokens
        self.otp = otp
        self.wallets = wallets
        self.nonce_bytes = nonce_bytes

    # ------------------------------------------------------------------
    # Password + session flows
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, profile: dict | None = None) -> Session:
        """Create an identity and log it in.

        Raises EmailInUse if the email is taken. No identity is created and no
        tokens are issued in that case.
        """
        email = normalize_email(email)
        if self.identities.find_by_email(email) is not None:
            raise EmailInUse()

        identity = self.identities.create(
            Identity(
                email=email,
                password_hash=self.passwords.hash(password),
                wallet_nonce=generate_nonce(self.nonce_bytes),
                profile=dict(profile or {}),
            )
        )
        logger.info("Registered user_id=%s", identity.id)
        return self.login(identity)

    def login(self, identity: Identity, role: str | None = None) -> Session:
        """Issue a session for an identity whose credentials were already checked."""
        session = self.tokens.issue(identity, role)
        self.identities.update_last_login(identity.id)
        return session

    def validate_credentials(self, email: str, password: str) -> Identity:
        """Return the identity for (email, password) or raise InvalidCredentials.

        Always runs one bcrypt comparison, whether or not the email exists,
        so response time does not reveal account existence.
        """
        identity = self.identities.find_by_email(normalize_email(email))
        if identity is None:
            self.passwords.verify_dummy(password)
            raise InvalidCredentials()
        if not self.passwords.verify(password, identity.password_hash):
            raise InvalidCredentials()
        return identity

    def refresh(self, refresh_token: str) -> Session:
        """Exchange a valid refresh token for a new session.

        Token failures propagate as TokenExpired / TokenMalformed /
        TokenBadSignature (all InvalidOrExpiredToken). An identity deleted
        since issuance also raises InvalidOrExpiredToken.
        """
        claims = self.tokens.verify(refresh_token, token_type=REFRESH)
        identity = self.identities.find_by_email(normalize_email(claims.email))
        if identity is None or str(identity.id) != claims.subject:
            raise InvalidOrExpiredToken("Invalid refresh token.")
        return self.login(identity, claims.role)

    def logout(self) -> dict:
        """Acknowledge logout. Tokens are stateless, so nothing is invalidated."""
        return {"message": "Logged out successfully"}

    def authenticate(self, access_token: str) -> Identity:
        """Resolve an access token to its live identity."""
        claims = self.tokens.verify(access_token, token_type=ACCESS)
        try:
            user_id = int(claims.subject)
        except ValueError as exc:
            raise TokenMalformed() from exc
        identity = self.identities.find_by_id(user_id)
        if identity is None:
            raise InvalidOrExpiredToken()
        return identity

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    def request_otp(self, email: str) -> None:
        self.otp.request(normalize_email(email))

    def verify_otp(self, email: str, code: str) -> bool:
        return self.otp.verify(normalize_email(email), code.strip())

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    def wallet_challenge(self, user_id: int) -> str:
        return self.wallets.challenge(user_id)

    def link_wallet(self, user_id: int, address: str, signature: str) -> Identity:
        return self.wallets.link(user_id, address, signature)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_auth_service(
    settings: Settings,
    identities: IdentityStore,
    otps: OtpStore,
    notifier: Notifier,
    recoverer: SignatureRecoverer | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> AuthService:
    """Wire an AuthService from settings and concrete collaborators."""
    return AuthService(
        identities=identities,
        passwords=PasswordVerifier(BcryptPasswordHasher(rounds=settings.bcrypt_rounds)),
        tokens=TokenIssuer.from_settings(settings, clock=clock),
        otp=OtpManager.from_settings(settings, identities, otps, notifier, clock=clock),
        wallets=WalletLinker(identities, recoverer or EthereumSignatureRecoverer(), settings.wallet_nonce_bytes),
        nonce_bytes=settings.wallet_nonce_bytes,
    )
