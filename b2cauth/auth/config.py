from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from b2cauth.auth.models import (
    DEFAULT_CALLBACK_PATH,
    DEFAULT_COOKIE_TTL_SECONDS,
    DEFAULT_INSTANCE,
    DEFAULT_SIGNED_OUT_CALLBACK_PATH,
    B2COptions,
)


@dataclass(frozen=True)
class AuthConfig:
    # Azure AD B2C tenant / app registration
    instance: str
    client_id: Optional[str]
    client_secret: Optional[str]
    domain: Optional[str]
    sign_up_sign_in_policy_id: Optional[str]
    reset_password_policy_id: Optional[str]
    edit_profile_policy_id: Optional[str]
    callback_path: str
    signed_out_callback_path: str
    scopes: List[str]

    # Session configuration
    public_base_url: Optional[str]
    session_secret: Optional[str]  # Required for session signing
    session_ttl_seconds: int
    cookie_secure: bool

    @property
    def b2c_enabled(self) -> bool:
        """B2C sign-in works once the tenant, client and sign-in policy are configured."""
        return bool(self.client_id and self.domain and self.sign_up_sign_in_policy_id)

    def apply_to(self, options: B2COptions) -> None:
        """Configuration callback for `add_azure_ad_b2c`."""
        options.instance = self.instance
        options.client_id = self.client_id
        options.client_secret = self.client_secret
        options.domain = self.domain
        options.sign_up_sign_in_policy_id = self.sign_up_sign_in_policy_id
        options.reset_password_policy_id = self.reset_password_policy_id
        options.edit_profile_policy_id = self.edit_profile_policy_id
        options.callback_path = self.callback_path
        options.signed_out_callback_path = self.signed_out_callback_path
        options.scopes = list(self.scopes)
        options.public_base_url = self.public_base_url
        options.session_secret = self.session_secret
        options.expire_time_span = self.session_ttl_seconds
        options.cookie_secure = self.cookie_secure


def _env(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _parse_path(value: Optional[str], default: str) -> str:
    p = (value or "").strip()
    if not p:
        return default
    return p if p.startswith("/") else "/" + p


def _parse_scopes(value: Optional[str]) -> List[str]:
    items = [x for x in (value or "").replace(",", " ").split() if x]
    if not items:
        return ["openid", "profile"]
    if "openid" not in items:
        items.insert(0, "openid")
    return items


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    B2C is enabled once B2C_CLIENT_ID, B2C_DOMAIN and B2C_SIGNUP_SIGNIN_POLICY_ID are set.
    """
    public_base_url = _env("AUTH_PUBLIC_BASE_URL")
    cookie_secure_env = (os.getenv("AUTH_COOKIE_SECURE", "") or "").strip().lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = (public_base_url or "").startswith("https://")

    raw_ttl = (os.getenv("AUTH_SESSION_TTL_SECONDS", "") or "").strip()
    ttl = int(float(raw_ttl)) if raw_ttl else DEFAULT_COOKIE_TTL_SECONDS
    if ttl <= 60:
        ttl = 60

    return AuthConfig(
        instance=_env("B2C_INSTANCE") or DEFAULT_INSTANCE,
        client_id=_env("B2C_CLIENT_ID"),
        client_secret=_env("B2C_CLIENT_SECRET"),
        domain=_env("B2C_DOMAIN"),
        sign_up_sign_in_policy_id=_env("B2C_SIGNUP_SIGNIN_POLICY_ID"),
        reset_password_policy_id=_env("B2C_RESET_PASSWORD_POLICY_ID"),
        edit_profile_policy_id=_env("B2C_EDIT_PROFILE_POLICY_ID"),
        callback_path=_parse_path(_env("B2C_CALLBACK_PATH"), DEFAULT_CALLBACK_PATH),
        signed_out_callback_path=_parse_path(_env("B2C_SIGNED_OUT_CALLBACK_PATH"), DEFAULT_SIGNED_OUT_CALLBACK_PATH),
        scopes=_parse_scopes(_env("B2C_SCOPES")),
        public_base_url=public_base_url.rstrip("/") if public_base_url else None,
        session_secret=_env("AUTH_SESSION_SECRET"),
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
    )
