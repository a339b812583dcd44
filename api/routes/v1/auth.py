"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register          -- create account; returns a session
  POST /api/v1/auth/login             -- password login; returns a session
  POST /api/v1/auth/refresh           -- exchange refresh token for a new session
  POST /api/v1/auth/logout            -- stateless acknowledgment
  POST /api/v1/auth/otp/request       -- email a one-time code
  POST /api/v1/auth/otp/verify        -- check a one-time code
  GET  /api/v1/auth/wallet/challenge  -- message the wallet must sign (requires auth)
  POST /api/v1/auth/wallet/link       -- bind a wallet address (requires auth)
  GET  /api/v1/auth/me                -- current identity (requires auth)

Handlers are sync: AuthService does blocking bcrypt and SQLAlchemy work,
and FastAPI runs sync handlers in its thread pool.

Failures are raised as AuthError subclasses by the service and rendered by
the AuthError handler in api/main.py. Handlers here never catch them.

Security:
  POST /login and POST /otp/request are rate-limited per IP.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit, otp_rate_limit
from api.models import (
    IdentityResponse,
    LoginRequest,
    MessageResponse,
    OtpRequest,
    OtpVerifyRequest,
    OtpVerifyResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    WalletChallengeResponse,
    WalletLinkRequest,
)
from auth.dependencies import get_auth_service, get_current_identity
from auth.models import Identity, Session
from auth.service import AuthService

# Auth policy:
# - POST /auth/register, /login, /refresh, /logout:  public
# - POST /auth/otp/request, /otp/verify:              public
# - GET  /auth/wallet/challenge, POST /wallet/link:  requires access token
# - GET  /auth/me:                                    requires access token
router = APIRouter()


def _session_response(session: Session, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=SessionResponse.from_session(session).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=SessionResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Create an account and return its first session. 409 if the email is taken."""
    session = service.register(body.email, body.password, body.profile)
    return _session_response(session, status_code=201)


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=SessionResponse)
def login(request: Request, body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with email and password.

    Wrong email and wrong password produce the same 401 "invalid_credentials"
    body, so the endpoint cannot be used to discover registered emails.
    """
    identity = service.validate_credentials(body.email, body.password)
    return _session_response(service.login(identity))


@router.post("/auth/refresh", response_model=SessionResponse)
def refresh(body: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Exchange a refresh token for a new access/refresh pair."""
    return _session_response(service.refresh(body.refresh_token))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Acknowledge logout. Tokens are stateless and expire on their own."""
    return MessageResponse(**service.logout())


# ---------------------------------------------------------------------------
# OTP endpoints
# ---------------------------------------------------------------------------


@limiter.limit(otp_rate_limit)
@router.post("/auth/otp/request", response_model=MessageResponse, status_code=202)
def request_otp(request: Request, body: OtpRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Email a one-time code to a registered address."""
    service.request_otp(body.email)
    return MessageResponse(message="Verification code sent.")


@router.post("/auth/otp/verify", response_model=OtpVerifyResponse)
def verify_otp(body: OtpVerifyRequest, service: AuthService = Depends(get_auth_service)) -> OtpVerifyResponse:
    """Check a one-time code. A code verifies at most once."""
    return OtpVerifyResponse(verified=service.verify_otp(body.email, body.code))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=IdentityResponse)
def me(identity: Identity = Depends(get_current_identity)) -> IdentityResponse:
    return IdentityResponse.from_identity(identity)


@router.get("/auth/wallet/challenge", response_model=WalletChallengeResponse)
def wallet_challenge(
    identity: Identity = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> WalletChallengeResponse:
    """Return the exact message the wallet must personal_sign for the next link."""
    return WalletChallengeResponse(message=service.wallet_challenge(identity.id))


@router.post("/auth/wallet/link", response_model=IdentityResponse)
def link_wallet(
    body: WalletLinkRequest,
    identity: Identity = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> IdentityResponse:
    """Bind the signing wallet to the current identity.

    The challenge nonce rotates after every attempt whose signature parses,
    so each signed challenge can be submitted once.
    """
    linked = service.link_wallet(identity.id, body.address, body.signature)
    return IdentityResponse.from_identity(linked)
