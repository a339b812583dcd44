"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes authenticate with an access token in the
Authorization: Bearer <token> header. Refresh tokens are rejected here
(TokenIssuer checks the "type" claim).

Failures raise the typed AuthError from auth/errors.py. api/main.py renders
those into the error envelope, so this module never builds an HTTP response.

Layer rule: may import from fastapi (Depends/Request) because this module is
part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.errors import TokenMalformed
from auth.models import Identity
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into app.state during lifespan startup."""
    return request.app.state.auth_service


def bearer_token(request: Request) -> str:
    """Extract the Bearer token from the Authorization header.

    Raises TokenMalformed (401) when the header is missing or not a Bearer.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
        raise TokenMalformed("Authentication required.")
    return auth_header[7:].strip()


def get_current_identity(
    token: str = Depends(bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> Identity:
    """Require a valid access token and return the identity it belongs to.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return service.authenticate(token)
