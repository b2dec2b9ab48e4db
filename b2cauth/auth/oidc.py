from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import jwt  # PyJWT
import requests

from b2cauth.auth.errors import OidcProtocolError
from b2cauth.auth.util import b64url

logger = logging.getLogger(__name__)

_CACHE_TTL_SECONDS = 3600
_HTTP_TIMEOUT_SECONDS = 10

_discovery_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}
_jwks_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}


def metadata_address(authority: str) -> str:
    return f"{authority.rstrip('/')}/.well-known/openid-configuration"


def _fetch_json(url: str, cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]], what: str) -> Dict[str, Any]:
    ts, cached = cache.get(url, (0.0, None))
    now = time.time()
    if cached is not None and now - ts < _CACHE_TTL_SECONDS:
        return cached
    try:
        r = requests.get(url, timeout=_HTTP_TIMEOUT_SECONDS)
        r.raise_for_status()
        data = r.json()
    except (requests.RequestException, ValueError) as e:
        raise OidcProtocolError(f"Unable to fetch {what} from {url}: {e}") from e
    if not isinstance(data, dict):
        raise OidcProtocolError(f"Invalid {what}")
    cache[url] = (now, data)
    return data


def get_discovery(authority: str) -> Dict[str, Any]:
    """
    Fetch the OIDC discovery document for an authority (one per B2C policy).
    Cached for 1 hour per URL.
    """
    return _fetch_json(metadata_address(authority), _discovery_cache, "OIDC discovery document")


def get_jwks(jwks_uri: str) -> Dict[str, Any]:
    return _fetch_json(jwks_uri, _jwks_cache, "JWKS")


def clear_caches() -> None:
    _discovery_cache.clear()
    _jwks_cache.clear()


def _endpoint(disc: Dict[str, Any], key: str) -> str:
    value = str(disc.get(key) or "")
    if not value:
        raise OidcProtocolError(f"OIDC discovery missing {key}")
    return value


def build_authorize_url(
    disc: Dict[str, Any],
    *,
    client_id: str,
    redirect_uri: str,
    response_type: str,
    scopes: List[str],
    state: str,
    nonce: str,
    code_challenge: Optional[str] = None,
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": response_type,
        "response_mode": "query",
        "scope": " ".join(scopes),
        "state": state,
        "nonce": nonce,
    }
    if code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    return f"{_endpoint(disc, 'authorization_endpoint')}?{urlencode(params)}"


def build_end_session_url(disc: Dict[str, Any], *, post_logout_redirect_uri: str, state: str) -> Optional[str]:
    end_session = str(disc.get("end_session_endpoint") or "")
    if not end_session:
        return None
    params = {"post_logout_redirect_uri": post_logout_redirect_uri, "state": state}
    sep = "&" if "?" in end_session else "?"
    return f"{end_session}{sep}{urlencode(params)}"


def exchange_code_for_tokens(
    disc: Dict[str, Any],
    *,
    client_id: str,
    client_secret: Optional[str],
    redirect_uri: str,
    code: str,
    code_verifier: Optional[str],
) -> Dict[str, Any]:
    """
    Exchange authorization code for tokens (id_token, access_token).
    """
    payload = {
        "client_id": client_id,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
    }
    if client_secret:
        payload["client_secret"] = client_secret
    if code_verifier:
        payload["code_verifier"] = code_verifier
    try:
        r = requests.post(_endpoint(disc, "token_endpoint"), data=payload, timeout=_HTTP_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise OidcProtocolError(f"Token exchange failed: {e}") from e
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise OidcProtocolError(f"Token exchange failed (status={r.status_code})")
    try:
        data = r.json()
    except ValueError as e:
        raise OidcProtocolError("Invalid token response") from e
    if not isinstance(data, dict):
        raise OidcProtocolError("Invalid token response")
    return data


def validate_id_token(
    disc: Dict[str, Any],
    *,
    id_token: str,
    client_id: str,
    expected_nonce: str,
) -> Dict[str, Any]:
    """
    Validate an ID token issued by the policy's authority.
    - Verifies JWT signature against the policy's JWKS
    - Validates issuer, audience, expiry, nonce
    """
    issuer = _endpoint(disc, "issuer")
    jwks_uri = _endpoint(disc, "jwks_uri")

    try:
        hdr = jwt.get_unverified_header(id_token)
    except jwt.PyJWTError as e:
        raise OidcProtocolError("Malformed ID token") from e
    kid = str(hdr.get("kid") or "")
    if not kid:
        raise OidcProtocolError("ID token missing kid")

    keys = get_jwks(jwks_uri).get("keys")
    if not isinstance(keys, list):
        raise OidcProtocolError("Invalid JWKS keys")
    jwk = next((k for k in keys if isinstance(k, dict) and str(k.get("kid") or "") == kid), None)
    if jwk is None:
        raise OidcProtocolError("Unknown signing key (kid)")

    try:
        key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))
    except (jwt.PyJWTError, ValueError) as e:
        raise OidcProtocolError("Invalid signing key in JWKS") from e
    try:
        claims = jwt.decode(
            id_token,
            key=key,
            algorithms=["RS256"],
            audience=client_id,
            issuer=issuer,
            options={"require": ["exp", "iat", "iss", "aud"]},
        )
    except jwt.PyJWTError as e:
        raise OidcProtocolError(f"ID token rejected: {e}") from e

    nonce = str(claims.get("nonce") or "")
    if not nonce or nonce != expected_nonce:
        raise OidcProtocolError("Nonce mismatch")
    return claims


def pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)
