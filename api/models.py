"""
API request and response models for credcore REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal
domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Identity, Session

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: deliverability is proven by the OTP flow, not by regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"

# bcrypt truncates at 72 bytes; the cap keeps ASCII passwords below that.
PASSWORD_MAX_LENGTH = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=8, max_length=PASSWORD_MAX_LENGTH)
    profile: dict[str, str] = Field(default_factory=dict, description="Free-form display fields.")


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=320)
    password: str = Field(max_length=PASSWORD_MAX_LENGTH)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class OtpRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)


class OtpVerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=320)
    code: str = Field(pattern=r"^\d{4,10}$")


class WalletLinkRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    address: str = Field(pattern=ADDRESS_PATTERN)
    signature: str = Field(min_length=1, max_length=512)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            token_type=session.token_type,
            expires_in=session.expires_in,
        )


class IdentityResponse(BaseModel):
    """Public view of an identity. Never includes hashes or the nonce."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    wallet_address: Optional[str] = None
    profile: dict = Field(default_factory=dict)
    created_at: str = ""

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            wallet_address=identity.wallet_address,
            profile=identity.profile or {},
            created_at=identity.created_at or "",
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OtpVerifyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    verified: bool


class WalletChallengeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
