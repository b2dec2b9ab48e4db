"""
Concrete authentication handlers.

A handler is created per action from its scheme and reads its options from the host's
options store, so nothing here holds per-request state between calls.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Type

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.responses import Response

from b2cauth.auth import oidc
from b2cauth.auth.errors import OidcProtocolError, SchemeConfigurationError
from b2cauth.auth.models import (
    AuthenticateResult,
    AuthProperties,
    AuthUser,
    CookieOptions,
    OpenIdConnectOptions,
    VirtualSchemeOptions,
)
from b2cauth.auth.session import (
    clear_session_cookie_kwargs,
    decode_user,
    encode_user,
    session_cookie_kwargs,
    sign_payload,
    unsign_payload,
)
from b2cauth.auth.util import random_token, sanitize_return_url, with_query

if TYPE_CHECKING:
    from b2cauth.auth.host import AuthenticationHost

logger = logging.getLogger(__name__)

POLICY_ITEM = "policy"

CORRELATION_SALT = "b2cauth-oidc-correlation-v1"
SIGN_OUT_STATE_SALT = "b2cauth-oidc-signout-v1"

# B2C reports "Forgot your password?" as a failed sign-in carrying this code.
FORGOT_PASSWORD_ERROR_CODE = "AADB2C90118"


@dataclass(frozen=True)
class AuthenticationScheme:
    name: str
    display_name: Optional[str]
    handler_type: Type["AuthenticationHandler"]


def _current_path(request: Request) -> str:
    q = request.url.query
    return f"{request.url.path}?{q}" if q else request.url.path


def _copy_set_cookie_headers(src: Response, dst: Response) -> None:
    for k, v in src.raw_headers:
        if k.lower() == b"set-cookie":
            dst.raw_headers.append((k, v))


def _no_store(resp: Response) -> Response:
    resp.headers["Cache-Control"] = "no-store"
    return resp


class AuthenticationHandler:
    options_type: Optional[Type[Any]] = None

    def __init__(self, scheme: AuthenticationScheme, host: "AuthenticationHost"):
        self.scheme = scheme
        self.host = host

    @property
    def options(self) -> Any:
        if self.options_type is None:
            return None
        return self.host.options.get(self.options_type, self.scheme.name)

    def authenticate(self, request: Request) -> AuthenticateResult:
        raise NotImplementedError(f"Scheme {self.scheme.name!r} does not support authenticate")

    def challenge(self, request: Request, properties: AuthProperties) -> Response:
        raise NotImplementedError(f"Scheme {self.scheme.name!r} does not support challenge")

    def forbid(self, request: Request, properties: AuthProperties) -> Response:
        raise NotImplementedError(f"Scheme {self.scheme.name!r} does not support forbid")

    def sign_in(self, request: Request, user: AuthUser, properties: AuthProperties, response: Response) -> None:
        raise NotImplementedError(f"Scheme {self.scheme.name!r} does not support sign-in")

    def sign_out(self, request: Request, properties: AuthProperties, response: Optional[Response]) -> Response:
        raise NotImplementedError(f"Scheme {self.scheme.name!r} does not support sign-out")

    def handles(self, request: Request) -> bool:
        """True when this handler owns the request path (remote callbacks)."""
        return False

    def handle_remote(self, request: Request) -> Response:
        raise NotImplementedError(f"Scheme {self.scheme.name!r} has no remote endpoints")


class CookieAuthenticationHandler(AuthenticationHandler):
    options_type = CookieOptions

    def authenticate(self, request: Request) -> AuthenticateResult:
        opts: CookieOptions = self.options
        value = request.cookies.get(opts.cookie_name or "")
        if not value:
            return AuthenticateResult.no_result(self.scheme.name)
        user = decode_user(opts, value)
        if user is None:
            logger.debug("Session cookie rejected (scheme=%s)", self.scheme.name)
            return AuthenticateResult.fail(self.scheme.name, "Invalid or expired session cookie")
        return AuthenticateResult.success(self.scheme.name, user)

    def challenge(self, request: Request, properties: AuthProperties) -> Response:
        opts: CookieOptions = self.options
        if not opts.login_path:
            # IMPORTANT: no `WWW-Authenticate`; browsers would show a basic-auth modal.
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
        return_url = sanitize_return_url(properties.redirect_uri or _current_path(request))
        url = with_query(opts.login_path, **{opts.return_url_parameter: return_url})
        return RedirectResponse(url=url, status_code=302)

    def forbid(self, request: Request, properties: AuthProperties) -> Response:
        opts: CookieOptions = self.options
        if not opts.access_denied_path:
            return JSONResponse(status_code=403, content={"detail": "Forbidden"})
        return_url = sanitize_return_url(properties.redirect_uri or _current_path(request))
        url = with_query(opts.access_denied_path, **{opts.return_url_parameter: return_url})
        return RedirectResponse(url=url, status_code=302)

    def sign_in(self, request: Request, user: AuthUser, properties: AuthProperties, response: Response) -> None:
        opts: CookieOptions = self.options
        if not opts.session_secret:
            raise HTTPException(status_code=500, detail="Session signing is not configured (AUTH_SESSION_SECRET)")
        expires_in = None
        max_age = opts.expire_time_span
        if properties.expires_in is not None:
            expires_in = max(0, min(int(properties.expires_in), opts.expire_time_span))
            max_age = expires_in
        value = encode_user(opts, user, expires_in=expires_in)
        response.set_cookie(**session_cookie_kwargs(opts, value or "", max_age=max_age))

    def sign_out(self, request: Request, properties: AuthProperties, response: Optional[Response]) -> Response:
        opts: CookieOptions = self.options
        resp = response
        if resp is None:
            resp = RedirectResponse(url=sanitize_return_url(properties.redirect_uri), status_code=302)
        resp.set_cookie(**clear_session_cookie_kwargs(opts))
        return resp


class OpenIdConnectHandler(AuthenticationHandler):
    """
    Authorization-code flow against a B2C policy.

    State, nonce, PKCE verifier, return URL and policy travel in one signed correlation cookie
    scoped to the callback path. The resulting session is persisted by `sign_in_scheme`.
    """

    options_type = OpenIdConnectOptions

    @property
    def correlation_cookie_name(self) -> str:
        return f".b2c.correlation.{self.scheme.name}"

    def _base_url(self, request: Request, opts: OpenIdConnectOptions) -> str:
        return (opts.public_base_url or str(request.base_url)).rstrip("/")

    def _state_secret(self, opts: OpenIdConnectOptions) -> str:
        if not opts.state_secret:
            raise HTTPException(status_code=500, detail="Session signing is not configured (AUTH_SESSION_SECRET)")
        return opts.state_secret

    def _discovery(self, opts: OpenIdConnectOptions, policy: Optional[str]) -> Dict[str, Any]:
        authority = opts.authority_for(policy)
        if not authority:
            raise HTTPException(status_code=500, detail="OIDC authority is not configured (B2C_DOMAIN / policy)")
        return oidc.get_discovery(authority)

    def _correlation_cookie_kwargs(self, opts: OpenIdConnectOptions, value: str, max_age: int) -> dict:
        return {
            "key": self.correlation_cookie_name,
            "value": value,
            "max_age": max_age,
            "httponly": True,
            "secure": opts.cookie_secure,
            "samesite": "lax",
            "path": opts.callback_path,
        }

    def authenticate(self, request: Request) -> AuthenticateResult:
        opts: OpenIdConnectOptions = self.options
        if not opts.sign_in_scheme:
            return AuthenticateResult.no_result(self.scheme.name)
        return self.host.authenticate(request, opts.sign_in_scheme)

    def challenge(self, request: Request, properties: AuthProperties) -> Response:
        opts: OpenIdConnectOptions = self.options
        if not opts.client_id:
            raise HTTPException(status_code=500, detail="OIDC client ID is not configured (B2C_CLIENT_ID)")
        secret = self._state_secret(opts)
        policy = properties.items.get(POLICY_ITEM) or opts.default_policy
        disc = self._discovery(opts, policy)

        state = random_token(32)
        nonce = random_token(32)
        verifier = random_token(32) if "code" in opts.response_type.split() else None
        url = oidc.build_authorize_url(
            disc,
            client_id=opts.client_id,
            redirect_uri=self._base_url(request, opts) + opts.callback_path,
            response_type=opts.response_type,
            scopes=opts.scopes,
            state=state,
            nonce=nonce,
            code_challenge=oidc.pkce_challenge(verifier) if verifier else None,
        )
        correlation = sign_payload(
            secret,
            CORRELATION_SALT,
            {
                "state": state,
                "nonce": nonce,
                "verifier": verifier,
                "redirect_uri": sanitize_return_url(properties.redirect_uri),
                "policy": policy,
            },
        )
        resp = _no_store(RedirectResponse(url=url, status_code=302))
        resp.set_cookie(**self._correlation_cookie_kwargs(opts, correlation or "", opts.correlation_ttl_seconds))
        logger.info("OIDC challenge: scheme=%s policy=%s", self.scheme.name, policy)
        return resp

    def forbid(self, request: Request, properties: AuthProperties) -> Response:
        opts: OpenIdConnectOptions = self.options
        if not opts.sign_in_scheme:
            return JSONResponse(status_code=403, content={"detail": "Forbidden"})
        return self.host.forbid(request, opts.sign_in_scheme, properties)

    def sign_out(self, request: Request, properties: AuthProperties, response: Optional[Response]) -> Response:
        opts: OpenIdConnectOptions = self.options
        secret = self._state_secret(opts)
        redirect_uri = sanitize_return_url(properties.redirect_uri)
        disc = self._discovery(opts, properties.items.get(POLICY_ITEM) or opts.default_policy)
        state = sign_payload(secret, SIGN_OUT_STATE_SALT, {"redirect_uri": redirect_uri}) or ""
        url = oidc.build_end_session_url(
            disc,
            post_logout_redirect_uri=self._base_url(request, opts) + opts.signed_out_callback_path,
            state=state,
        )
        resp = _no_store(RedirectResponse(url=url or redirect_uri, status_code=302))
        if response is not None:
            _copy_set_cookie_headers(response, resp)
        return resp

    def handles(self, request: Request) -> bool:
        opts: OpenIdConnectOptions = self.options
        return request.url.path in (opts.callback_path, opts.signed_out_callback_path)

    def handle_remote(self, request: Request) -> Response:
        opts: OpenIdConnectOptions = self.options
        if request.url.path == opts.signed_out_callback_path:
            return self._handle_signed_out(request, opts)
        try:
            resp = self._handle_callback(request, opts)
        except OidcProtocolError as e:
            resp = self._remote_failure(request, opts, e)
        resp.set_cookie(**self._correlation_cookie_kwargs(opts, "", 0))
        return resp

    def _handle_callback(self, request: Request, opts: OpenIdConnectOptions) -> Response:
        params = request.query_params
        error = params.get("error")
        if error:
            raise OidcProtocolError(
                f"Identity provider returned an error: {error}",
                error=error,
                error_description=params.get("error_description"),
            )

        corr = unsign_payload(
            self._state_secret(opts),
            CORRELATION_SALT,
            request.cookies.get(self.correlation_cookie_name),
            opts.correlation_ttl_seconds,
        )
        if corr is None:
            raise OidcProtocolError("Correlation cookie missing or invalid")
        state = (params.get("state") or "").strip()
        if not state or state != corr.get("state"):
            raise OidcProtocolError("Invalid OAuth state")
        code = (params.get("code") or "").strip()
        if not code:
            raise OidcProtocolError("Missing authorization code")

        policy = corr.get("policy") or opts.default_policy
        disc = self._discovery(opts, policy)
        tokens = oidc.exchange_code_for_tokens(
            disc,
            client_id=opts.client_id or "",
            client_secret=opts.client_secret,
            redirect_uri=self._base_url(request, opts) + opts.callback_path,
            code=code,
            code_verifier=corr.get("verifier"),
        )
        id_token = str(tokens.get("id_token") or "").strip()
        if not id_token:
            raise OidcProtocolError("Missing id_token in token response")
        claims = oidc.validate_id_token(
            disc, id_token=id_token, client_id=opts.client_id or "", expected_nonce=str(corr.get("nonce") or "")
        )
        user = self._user_from_claims(claims, opts, policy)

        properties = AuthProperties(redirect_uri=sanitize_return_url(corr.get("redirect_uri")))
        if opts.use_token_lifetime and claims.get("exp"):
            properties.expires_in = max(0, int(claims["exp"]) - int(time.time()))

        if not opts.sign_in_scheme:
            raise SchemeConfigurationError(f"OIDC scheme {self.scheme.name!r} has no sign-in scheme")
        resp = _no_store(RedirectResponse(url=properties.redirect_uri or "/", status_code=302))
        self.host.sign_in(request, opts.sign_in_scheme, user, properties, resp)
        logger.info(
            "OIDC sign-in: scheme=%s sign_in_scheme=%s policy=%s", self.scheme.name, opts.sign_in_scheme, policy
        )
        return resp

    def _user_from_claims(self, claims: Dict[str, Any], opts: OpenIdConnectOptions, policy: Optional[str]) -> AuthUser:
        subject = str(claims.get("sub") or claims.get("oid") or "").strip()
        if not subject:
            raise OidcProtocolError("ID token missing subject")
        emails = claims.get("emails")
        email = emails[0] if isinstance(emails, list) and emails else claims.get("email")
        name = claims.get(opts.name_claim_type)
        return AuthUser(
            scheme=self.scheme.name,
            subject=subject,
            name=str(name) if name else None,
            email=str(email).strip().lower() if email else None,
            policy=str(claims.get("tfp") or claims.get("acr") or policy or "") or None,
        )

    def _remote_failure(self, request: Request, opts: OpenIdConnectOptions, e: OidcProtocolError) -> Response:
        description = e.error_description or ""
        if e.error and FORGOT_PASSWORD_ERROR_CODE in description and opts.reset_password_path:
            logger.info("OIDC remote failure: password reset requested (scheme=%s)", self.scheme.name)
            url = opts.reset_password_path
        elif e.error == "access_denied":
            # User cancelled a B2C user flow.
            logger.info("OIDC remote failure: user cancelled (scheme=%s)", self.scheme.name)
            url = "/"
        else:
            logger.warning("OIDC remote failure (scheme=%s): %s", self.scheme.name, str(e))
            url = opts.error_path
        return _no_store(RedirectResponse(url=url, status_code=302))

    def _handle_signed_out(self, request: Request, opts: OpenIdConnectOptions) -> Response:
        data = unsign_payload(
            opts.state_secret, SIGN_OUT_STATE_SALT, request.query_params.get("state"), opts.correlation_ttl_seconds
        )
        redirect_uri = sanitize_return_url((data or {}).get("redirect_uri"))
        return _no_store(RedirectResponse(url=redirect_uri, status_code=302))


class VirtualSchemeHandler(AuthenticationHandler):
    """Has no behavior of its own; every action is forwarded to another scheme."""

    options_type = VirtualSchemeOptions

    def _target(self, action: str) -> str:
        opts: VirtualSchemeOptions = self.options
        target = opts.target_for(action)
        if not target:
            raise SchemeConfigurationError(f"Virtual scheme {self.scheme.name!r} has no target for {action}")
        return target

    def authenticate(self, request: Request) -> AuthenticateResult:
        return self.host.authenticate(request, self._target("authenticate"))

    def challenge(self, request: Request, properties: AuthProperties) -> Response:
        return self.host.challenge(request, self._target("challenge"), properties)

    def forbid(self, request: Request, properties: AuthProperties) -> Response:
        return self.host.forbid(request, self._target("forbid"), properties)

    def sign_in(self, request: Request, user: AuthUser, properties: AuthProperties, response: Response) -> None:
        self.host.sign_in(request, self._target("sign_in"), user, properties, response)

    def sign_out(self, request: Request, properties: AuthProperties, response: Optional[Response]) -> Response:
        return self.host.sign_out(request, self._target("sign_out"), properties, response)
