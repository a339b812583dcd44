"""
tests/conftest.py -- Shared test fixtures for credcore.

This module provides:
  - FrozenClock: controllable clock injected into TokenIssuer / OtpManager
  - FakeNotifier: records dispatched codes, can be told to fail
  - store fixtures: isolated in-memory SQLite stores sharing one engine
  - service: a fully wired AuthService (real bcrypt, real eth-account)
  - api_client: TestClient over the real app with a patched lifespan

Environment: DEBUG must be set before any core/auth/api import so Settings can
auto-generate the signing secret instead of raising ValueError. Rate limits
are raised so module-scoped clients never trip them by accident.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("OTP_RATE_LIMIT", "1000/minute")

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient

from auth.otp import OtpManager
from auth.passwords import BcryptPasswordHasher, PasswordVerifier
from auth.service import AuthService
from auth.store import IdentityStore, OtpStore, create_store_engine
from auth.tokens import TokenIssuer
from auth.wallet import EthereumSignatureRecoverer, WalletLinker

ACCESS_SECRET = "a" * 32 + "-access-secret-for-tests"
REFRESH_SECRET = "r" * 32 + "-refresh-secret-for-tests"

# Fixed keys so failures are reproducible.
WALLET_KEY = "0x" + "11" * 32
OTHER_WALLET_KEY = "0x" + "22" * 32


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeNotifier:
    """Notifier that records (email, code) pairs instead of sending email."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None

    def send_otp_email(self, email: str, code: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((email, code))

    def last_code(self, email: str) -> str:
        return [c for e, c in self.sent if e == email][-1]


def sign_message(private_key: str, message: str) -> str:
    """personal_sign message with private_key; returns a 0x-prefixed hex signature."""
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def engine():
    engine = create_store_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def identities(engine) -> IdentityStore:
    return IdentityStore(engine=engine)


@pytest.fixture
def otps(engine) -> OtpStore:
    return OtpStore(engine=engine)


@pytest.fixture(scope="session")
def hasher() -> BcryptPasswordHasher:
    return BcryptPasswordHasher(rounds=4)


@pytest.fixture
def issuer(clock) -> TokenIssuer:
    return TokenIssuer(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, clock=clock)


@pytest.fixture
def otp_manager(identities, otps, notifier, clock) -> OtpManager:
    return OtpManager(identities, otps, notifier, clock=clock)


@pytest.fixture
def linker(identities) -> WalletLinker:
    return WalletLinker(identities, EthereumSignatureRecoverer())


@pytest.fixture
def service(identities, hasher, issuer, otp_manager, linker) -> AuthService:
    return AuthService(
        identities=identities,
        passwords=PasswordVerifier(hasher),
        tokens=issuer,
        otp=otp_manager,
        wallets=linker,
    )


@pytest.fixture
def wallet():
    return Account.from_key(WALLET_KEY)


@pytest.fixture
def other_wallet():
    return Account.from_key(OTHER_WALLET_KEY)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service into app.state so TestClient routes use
    the isolated in-memory stores and the FakeNotifier.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, FakeNotifier], None, None]:
    """Yield (client, notifier) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, dependencies and exception handlers. base_url is
    localhost so TrustedHostMiddleware accepts the requests.

    Each test module gets its own named shared-memory database; plain
    ':memory:' would hand each TestClient worker thread a blank schema.
    """
    from api.main import app

    db_url = f"sqlite:///file:test_api_{request.module.__name__}?mode=memory&cache=shared&uri=true"
    engine = create_store_engine(db_url)
    identities = IdentityStore(engine=engine)
    otps = OtpStore(engine=engine)
    notifier = FakeNotifier()
    hasher = BcryptPasswordHasher(rounds=4)
    service = AuthService(
        identities=identities,
        passwords=PasswordVerifier(hasher),
        tokens=TokenIssuer(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET),
        otp=OtpManager(identities, otps, notifier),
        wallets=WalletLinker(identities, EthereumSignatureRecoverer()),
    )

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, notifier

    engine.dispose()

