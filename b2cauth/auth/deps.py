from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from b2cauth.auth.host import AuthenticationHost
from b2cauth.auth.models import AuthUser


class ChallengeRequired(Exception):
    """Raised by page dependencies; the app turns it into a challenge on `scheme`."""

    def __init__(self, scheme: Optional[str] = None):
        super().__init__(scheme or "default")
        self.scheme = scheme


def get_auth_host(request: Request) -> AuthenticationHost:
    return request.app.state.auth


def authenticate_request(request: Request, scheme: Optional[str] = None) -> Optional[AuthUser]:
    """
    Authenticate a request against `scheme` (default scheme when omitted).

    The middleware already did this for the default scheme; reuse its result.
    """
    if scheme is None and hasattr(request.state, "user"):
        return request.state.user
    result = get_auth_host(request).authenticate(request, scheme)
    return result.user


def require_user(request: Request) -> AuthUser:
    """API dependency: 401 JSON when anonymous."""
    user = authenticate_request(request)
    if user is None:
        # IMPORTANT: do not emit `WWW-Authenticate` (browser auth modal).
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def require_signed_in(request: Request) -> AuthUser:
    """Page dependency: anonymous users are challenged (redirected to the identity provider)."""
    user = authenticate_request(request)
    if user is None:
        raise ChallengeRequired()
    return user
