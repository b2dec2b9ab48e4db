"""
Derive the concrete OpenID Connect / cookie options from a virtual B2C scheme's options.

The two `configure_*` functions are pure assignments from (mapping, B2COptions) onto the
target, so the host may run them any number of times with the same result.
"""
from __future__ import annotations

import logging

from b2cauth.auth.models import B2COptions, CookieOptions, OpenIdConnectOptions, SchemeMapping
from b2cauth.auth.options import OptionsStore
from b2cauth.auth.registry import SchemeMappingRegistry

logger = logging.getLogger(__name__)

ACCOUNT_ROUTE_PREFIX = "/AzureADB2C/Account"


def default_cookie_name(cookie_scheme: str) -> str:
    return f".b2c.{cookie_scheme}"


def configure_openid_connect(mapping: SchemeMapping, options: B2COptions, target: OpenIdConnectOptions) -> None:
    target.authority = options.authority
    target.client_id = options.client_id
    target.client_secret = options.client_secret
    target.response_type = options.response_type
    target.callback_path = options.callback_path
    target.signed_out_callback_path = options.signed_out_callback_path
    target.scopes = list(options.scopes)
    # Sessions produced by this OIDC scheme are persisted by its own cookie scheme.
    target.sign_in_scheme = mapping.cookie_scheme
    target.use_token_lifetime = True
    target.name_claim_type = "name"
    target.public_base_url = options.public_base_url
    target.state_secret = options.session_secret
    target.cookie_secure = options.cookie_secure

    target.default_policy = options.default_policy
    target.reset_password_policy_id = options.reset_password_policy_id
    target.edit_profile_policy_id = options.edit_profile_policy_id

    target.reset_password_path = f"{ACCOUNT_ROUTE_PREFIX}/ResetPassword/{mapping.virtual_scheme}"
    target.error_path = f"{ACCOUNT_ROUTE_PREFIX}/Error"


def configure_cookie(mapping: SchemeMapping, options: B2COptions, target: CookieOptions) -> None:
    target.cookie_name = options.cookie_name or default_cookie_name(mapping.cookie_scheme)
    target.expire_time_span = options.expire_time_span
    target.cookie_path = options.cookie_path
    target.cookie_secure = options.cookie_secure
    target.session_secret = options.session_secret

    target.login_path = f"{ACCOUNT_ROUTE_PREFIX}/SignIn/{mapping.virtual_scheme}"
    target.logout_path = f"{ACCOUNT_ROUTE_PREFIX}/SignOut/{mapping.virtual_scheme}"
    target.access_denied_path = f"{ACCOUNT_ROUTE_PREFIX}/AccessDenied"


class OptionsForwarder:
    """
    Binds the configure functions to the host's options store.

    The store asks for options by *concrete* scheme name; schemes that are not part of a B2C
    mapping (e.g. a plain cookie scheme registered by the app) are left alone.
    """

    def __init__(self, registry: SchemeMappingRegistry, store: OptionsStore):
        self._registry = registry
        self._store = store

    def attach(self) -> "OptionsForwarder":
        self._store.configure_all(OpenIdConnectOptions, self.configure_openid_connect_named)
        self._store.configure_all(CookieOptions, self.configure_cookie_named)
        return self

    def configure_openid_connect_named(self, name: str, target: OpenIdConnectOptions) -> None:
        mapping = self._registry.find_by_openid_connect_scheme(name)
        if mapping is None:
            return
        options = self._store.get(B2COptions, mapping.virtual_scheme)
        configure_openid_connect(mapping, options, target)
        logger.debug("Forwarded B2C options %s -> oidc scheme %s", mapping.virtual_scheme, name)

    def configure_cookie_named(self, name: str, target: CookieOptions) -> None:
        mapping = self._registry.find_by_cookie_scheme(name)
        if mapping is None:
            return
        options = self._store.get(B2COptions, mapping.virtual_scheme)
        configure_cookie(mapping, options, target)
        logger.debug("Forwarded B2C options %s -> cookie scheme %s", mapping.virtual_scheme, name)
