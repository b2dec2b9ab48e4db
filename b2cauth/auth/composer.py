from __future__ import annotations

import logging
from typing import Callable, Optional

from b2cauth.auth.errors import DuplicateSchemeError, InvalidSchemeNameError
from b2cauth.auth.forwarding import OptionsForwarder
from b2cauth.auth.handlers import CookieAuthenticationHandler, OpenIdConnectHandler
from b2cauth.auth.host import AuthenticationHost
from b2cauth.auth.models import B2COptions, SchemeMapping, VirtualSchemeOptions

logger = logging.getLogger(__name__)

DEFAULT_SCHEME = "AzureADB2C"
DEFAULT_OPENID_CONNECT_SCHEME = "AzureADB2COpenID"
DEFAULT_COOKIE_SCHEME = "AzureADB2CCookie"
DEFAULT_DISPLAY_NAME = "AzureADB2C"


def _validate_scheme_names(virtual_scheme: str, openid_connect_scheme: str, cookie_scheme: str) -> None:
    names = {
        "virtual_scheme": virtual_scheme,
        "openid_connect_scheme": openid_connect_scheme,
        "cookie_scheme": cookie_scheme,
    }
    for field_name, value in names.items():
        if not isinstance(value, str) or not value.strip():
            raise InvalidSchemeNameError(f"{field_name} must be a non-empty string")
    if len(set(names.values())) != len(names):
        raise InvalidSchemeNameError(
            f"Scheme names must be distinct (virtual={virtual_scheme!r}, "
            f"openid_connect={openid_connect_scheme!r}, cookie={cookie_scheme!r})"
        )


class VirtualSchemeComposer:
    """
    Registers a virtual B2C scheme: mapping, forwarding scheme, and the two concrete schemes.

    Runs once per virtual scheme at startup; every failure here is a configuration defect and
    propagates to the caller.
    """

    def __init__(self, host: AuthenticationHost):
        self.host = host
        self.registry = host.registry
        self.forwarder: OptionsForwarder = host.try_add_service(
            OptionsForwarder, lambda: OptionsForwarder(host.registry, host.options).attach()
        )

    def register(
        self,
        virtual_scheme: str,
        openid_connect_scheme: str,
        cookie_scheme: str,
        display_name: Optional[str],
        configure: Callable[[B2COptions], None],
    ) -> SchemeMapping:
        _validate_scheme_names(virtual_scheme, openid_connect_scheme, cookie_scheme)

        if self.host.has_scheme(virtual_scheme):
            raise DuplicateSchemeError(virtual_scheme)
        for m in self.registry:
            taken = (m.virtual_scheme, m.openid_connect_scheme, m.cookie_scheme)
            if openid_connect_scheme in taken or cookie_scheme in taken:
                raise InvalidSchemeNameError(
                    f"Concrete schemes of {virtual_scheme!r} are already used by virtual scheme {m.virtual_scheme!r}"
                )
        for name, handler_type in (
            (openid_connect_scheme, OpenIdConnectHandler),
            (cookie_scheme, CookieAuthenticationHandler),
        ):
            if self.host.has_scheme(name) and not issubclass(self.host.get_scheme(name).handler_type, handler_type):
                raise InvalidSchemeNameError(
                    f"Existing scheme {name!r} is a {self.host.get_scheme(name).handler_type.__name__}, "
                    f"expected {handler_type.__name__}"
                )

        mapping = SchemeMapping(
            virtual_scheme=virtual_scheme,
            openid_connect_scheme=openid_connect_scheme,
            cookie_scheme=cookie_scheme,
        )
        self.registry.add(mapping)

        def _forward(o: VirtualSchemeOptions) -> None:
            o.default = cookie_scheme
            o.challenge = openid_connect_scheme

        self.host.add_virtual_scheme(virtual_scheme, display_name, _forward)

        # Detailed options come from the forwarder on first use.
        if not self.host.has_scheme(openid_connect_scheme):
            self.host.add_openid_connect(openid_connect_scheme)
        if not self.host.has_scheme(cookie_scheme):
            self.host.add_cookie(cookie_scheme)

        self.host.options.configure(B2COptions, virtual_scheme, configure)

        logger.info(
            "B2C scheme registered: %s (display=%s) default=%s challenge=%s",
            virtual_scheme,
            display_name,
            cookie_scheme,
            openid_connect_scheme,
        )
        return mapping


def add_azure_ad_b2c(
    host: AuthenticationHost,
    configure: Callable[[B2COptions], None],
    *,
    scheme: str = DEFAULT_SCHEME,
    openid_connect_scheme: str = DEFAULT_OPENID_CONNECT_SCHEME,
    cookie_scheme: str = DEFAULT_COOKIE_SCHEME,
    display_name: Optional[str] = DEFAULT_DISPLAY_NAME,
) -> SchemeMapping:
    """
    Add Azure AD B2C authentication to `host`.

    Example:
        host = AuthenticationHost()
        add_azure_ad_b2c(host, load_auth_config().apply_to)
        host.default_scheme = DEFAULT_SCHEME
        host.freeze()
    """
    return VirtualSchemeComposer(host).register(scheme, openid_connect_scheme, cookie_scheme, display_name, configure)
