"""
auth/errors.py -- Typed failure hierarchy for the credential lifecycle.

Every failure is classified exactly once, where it is detected, by raising
the matching AuthError subclass. Outer layers never catch broadly and
re-raise as something more generic: a Conflict raised by the store reaches
the HTTP handler as a Conflict.

Each class carries:
  kind         -- ErrorKind, used for logging and metrics-style grouping.
  code         -- machine-readable string placed in the error envelope.
  status_code  -- HTTP status the api/ layer renders.
  message      -- client-safe text. Never contains stack traces or SQL.

UserNotFound deliberately shares code/status/message with InvalidCredentials.
Login and OTP request must fail identically in shape so callers cannot discover
which emails are registered; only the internal kind differs.

Layer rule: no imports from api/, core/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class AuthError(Exception):
    """Base class for every classified failure."""

    kind: ErrorKind = ErrorKind.INTERNAL
    code: str = "internal_error"
    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class EmailInUse(AuthError):
    kind = ErrorKind.CONFLICT
    code = "email_in_use"
    status_code = 409
    message = "Email is already in use."


# ---------------------------------------------------------------------------
# Unauthorized
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    kind = ErrorKind.UNAUTHORIZED
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid credentials."


class InvalidOrExpiredToken(AuthError):
    kind = ErrorKind.UNAUTHORIZED
    code = "invalid_token"
    status_code = 401
    message = "Invalid or expired token."


class TokenExpired(InvalidOrExpiredToken):
    code = "token_expired"
    message = "Token expired."


class TokenMalformed(InvalidOrExpiredToken):
    message = "Malformed token."


class TokenBadSignature(InvalidOrExpiredToken):
    message = "Token signature verification failed."


class InvalidSignature(AuthError):
    kind = ErrorKind.UNAUTHORIZED
    code = "invalid_signature"
    status_code = 401
    message = "Invalid signature."


class AddressMismatch(AuthError):
    kind = ErrorKind.UNAUTHORIZED
    code = "address_mismatch"
    status_code = 401
    message = "Signature verification failed."


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class UserNotFound(AuthError):
    kind = ErrorKind.NOT_FOUND
    code = InvalidCredentials.code
    status_code = InvalidCredentials.status_code
    message = InvalidCredentials.message


# ---------------------------------------------------------------------------
# Transient / timeout
# ---------------------------------------------------------------------------


class StoreUnavailable(AuthError):
    kind = ErrorKind.TRANSIENT
    code = "service_unavailable"
    status_code = 503
    message = "Service temporarily unavailable."


class DeliveryFailed(AuthError):
    """Raised by a Notifier when the message could not be handed off."""

    kind = ErrorKind.TRANSIENT
    code = "delivery_failed"
    status_code = 503
    message = "Message delivery failed."


class OtpDispatchFailed(AuthError):
    kind = ErrorKind.TRANSIENT
    code = "otp_dispatch_failed"
    status_code = 503
    message = "Failed to send verification code."


class OperationTimeout(AuthError):
    kind = ErrorKind.TIMEOUT
    code = "timeout"
    status_code = 504
    message = "The operation timed out."
