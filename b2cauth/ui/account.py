from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from starlette.responses import Response

from b2cauth.auth.deps import authenticate_request, get_auth_host
from b2cauth.auth.errors import SchemeNotFoundError
from b2cauth.auth.forwarding import ACCOUNT_ROUTE_PREFIX
from b2cauth.auth.handlers import POLICY_ITEM
from b2cauth.auth.host import AuthenticationHost
from b2cauth.auth.models import AuthProperties, B2COptions, SchemeMapping
from b2cauth.auth.util import sanitize_return_url
from b2cauth.ui.pages import ACCOUNT_PAGES, page_url, render_page

logger = logging.getLogger(__name__)

account_router = APIRouter(prefix=ACCOUNT_ROUTE_PREFIX)


def _resolve(host: AuthenticationHost, scheme: str) -> SchemeMapping:
    try:
        return host.registry.resolve(scheme)
    except SchemeNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown authentication scheme: {scheme}")


def _challenge_with_policy(request: Request, scheme: str, policy_field: str, what: str) -> Response:
    host = get_auth_host(request)
    _resolve(host, scheme)
    policy = getattr(host.options.get(B2COptions, scheme), policy_field)
    if not policy:
        raise HTTPException(status_code=404, detail=f"{what} policy is not configured")
    properties = AuthProperties(redirect_uri="/", items={POLICY_ITEM: policy})
    return host.challenge(request, scheme, properties)


@account_router.get("/SignIn/{scheme}")
def sign_in(request: Request, scheme: str, return_url: Optional[str] = Query(None, alias="ReturnUrl")) -> Response:
    host = get_auth_host(request)
    _resolve(host, scheme)
    properties = AuthProperties(redirect_uri=sanitize_return_url(return_url))
    return host.challenge(request, scheme, properties)


@account_router.get("/ResetPassword/{scheme}")
def reset_password(request: Request, scheme: str) -> Response:
    return _challenge_with_policy(request, scheme, "reset_password_policy_id", "Password reset")


@account_router.get("/EditProfile/{scheme}")
def edit_profile(request: Request, scheme: str) -> Response:
    return _challenge_with_policy(request, scheme, "edit_profile_policy_id", "Profile edit")


@account_router.get("/SignOut/{scheme}")
def sign_out(request: Request, scheme: str) -> Response:
    host = get_auth_host(request)
    mapping = _resolve(host, scheme)
    properties = AuthProperties(redirect_uri=page_url("SignedOut"))
    # The identity provider builds the redirect; the cookie scheme clears the session on it.
    resp = host.sign_out(request, mapping.openid_connect_scheme, properties)
    resp = host.sign_out(request, mapping.cookie_scheme, properties, resp)
    logger.info("Sign-out: scheme=%s", scheme)
    return resp


@account_router.get(ACCOUNT_PAGES["SignedOut"].route, response_class=HTMLResponse)
def signed_out(request: Request) -> Response:
    if authenticate_request(request) is not None:
        # Still signed in (e.g. back button); nothing to show.
        return RedirectResponse(url="/", status_code=302)
    return HTMLResponse(render_page("SignedOut"))


@account_router.get(ACCOUNT_PAGES["AccessDenied"].route, response_class=HTMLResponse)
def access_denied(return_url: Optional[str] = Query(None, alias="ReturnUrl")) -> HTMLResponse:
    return HTMLResponse(render_page("AccessDenied", return_url=sanitize_return_url(return_url, default="")))


@account_router.get(ACCOUNT_PAGES["Error"].route, response_class=HTMLResponse)
def error(request: Request) -> HTMLResponse:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
    return HTMLResponse(render_page("Error", request_id=request_id))
