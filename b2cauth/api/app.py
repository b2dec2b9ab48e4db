"""
FastAPI application wiring for the B2C integration.

`create_app()` registers the B2C virtual scheme on a fresh `AuthenticationHost`, freezes it,
and mounts the account pages. A request middleware lets the OIDC handler own its callback
paths and attaches the default scheme's user to `request.state.user`.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from b2cauth.auth.composer import DEFAULT_SCHEME, add_azure_ad_b2c
from b2cauth.auth.config import AuthConfig, load_auth_config
from b2cauth.auth.deps import ChallengeRequired, get_auth_host, require_signed_in, require_user
from b2cauth.auth.forwarding import ACCOUNT_ROUTE_PREFIX
from b2cauth.auth.handlers import VirtualSchemeHandler
from b2cauth.auth.host import AuthenticationHost
from b2cauth.auth.models import AuthProperties, AuthUser
from b2cauth.auth.util import random_token
from b2cauth.ui.account import account_router
from b2cauth.ui.pages import HOME_TEMPLATE, render_template

logger = logging.getLogger(__name__)


def build_auth_host(cfg: AuthConfig) -> AuthenticationHost:
    host = AuthenticationHost()
    add_azure_ad_b2c(host, cfg.apply_to)
    host.default_scheme = DEFAULT_SCHEME
    host.freeze()
    if not cfg.b2c_enabled:
        logger.warning("B2C is not fully configured (B2C_CLIENT_ID / B2C_DOMAIN / B2C_SIGNUP_SIGNIN_POLICY_ID)")
    if not cfg.session_secret:
        logger.warning("AUTH_SESSION_SECRET is not set; sign-in will fail")
    return host


def _user_json(user: AuthUser) -> Dict[str, Any]:
    return {
        "scheme": user.scheme,
        "subject": user.subject,
        "name": user.name,
        "email": user.email,
        "policy": user.policy,
    }


def create_app(cfg: Optional[AuthConfig] = None, host: Optional[AuthenticationHost] = None) -> FastAPI:
    cfg = cfg or load_auth_config()
    if host is None:
        host = build_auth_host(cfg)

    app = FastAPI(title="B2C integration")
    app.state.auth = host
    app.state.auth_config = cfg
    app.include_router(account_router)

    @app.exception_handler(ChallengeRequired)
    def _on_challenge_required(request: Request, exc: ChallengeRequired) -> Response:
        q = request.url.query
        return_url = f"{request.url.path}?{q}" if q else request.url.path
        return host.challenge(request, exc.scheme, AuthProperties(redirect_uri=return_url))

    @app.middleware("http")
    async def authenticate_requests(request: Request, call_next):
        """Remote-auth dispatch, default-scheme authentication, and request logging."""
        start_time = time.time()
        request.state.request_id = request.headers.get("x-request-id") or random_token(8)
        logger.debug("%s %s", request.method, request.url.path)
        try:
            try:
                remote = await run_in_threadpool(host.handle_remote, request)
            except HTTPException as e:
                # Raised outside routing, so FastAPI's exception handlers never see it.
                logger.warning("Remote authentication failed on %s: %s", request.url.path, e.detail)
                remote = JSONResponse(status_code=e.status_code, content={"detail": e.detail}, headers=e.headers)
            if remote is not None:
                response = remote
            else:
                request.state.user = host.authenticate(request).user
                response = await call_next(request)
            process_time = time.time() - start_time
            logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
            return response
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    @app.get("/", response_class=HTMLResponse)
    def home(request: Request, user: AuthUser = Depends(require_signed_in)) -> HTMLResponse:
        mapping = get_auth_host(request).registry.resolve(DEFAULT_SCHEME)
        html = render_template(
            HOME_TEMPLATE,
            title="Home",
            user=user,
            sign_out_url=f"{ACCOUNT_ROUTE_PREFIX}/SignOut/{mapping.virtual_scheme}",
            edit_profile_url=(
                f"{ACCOUNT_ROUTE_PREFIX}/EditProfile/{mapping.virtual_scheme}" if cfg.edit_profile_policy_id else None
            ),
        )
        return HTMLResponse(html)

    @app.get("/api/auth/me")
    def auth_me(user: AuthUser = Depends(require_user)) -> Dict[str, Any]:
        return {"ok": True, "user": _user_json(user)}

    @app.get("/api/auth/schemes")
    def auth_schemes(request: Request) -> Dict[str, Any]:
        """
        Sign-in options for the UI: virtual schemes only (concrete ones are implementation detail).
        This endpoint is intentionally public; it returns no secrets.
        """
        h = get_auth_host(request)
        schemes = []
        for s in h.schemes():
            if s.handler_type is not VirtualSchemeHandler or s.name not in h.registry:
                continue
            schemes.append(
                {
                    "name": s.name,
                    "displayName": s.display_name or s.name,
                    "signInUrl": f"{ACCOUNT_ROUTE_PREFIX}/SignIn/{s.name}",
                }
            )
        return {"ok": True, "b2cEnabled": cfg.b2c_enabled, "schemes": schemes}

    return app


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting B2C integration server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(create_app(), host=host, port=port, log_level=uvicorn_log_level)
