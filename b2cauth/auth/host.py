from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Type

from fastapi import Request
from starlette.responses import Response

from b2cauth.auth.errors import DuplicateSchemeError, SchemeConfigurationError, UnknownSchemeError
from b2cauth.auth.handlers import (
    AuthenticationHandler,
    AuthenticationScheme,
    CookieAuthenticationHandler,
    OpenIdConnectHandler,
    VirtualSchemeHandler,
)
from b2cauth.auth.models import (
    AuthenticateResult,
    AuthProperties,
    AuthUser,
    CookieOptions,
    OpenIdConnectOptions,
    VirtualSchemeOptions,
)
from b2cauth.auth.options import OptionsStore
from b2cauth.auth.registry import SchemeMappingRegistry

logger = logging.getLogger(__name__)


class AuthenticationHost:
    """
    Scheme table + per-request dispatch (authenticate / challenge / forbid / sign-in / sign-out).

    Schemes are registered at startup, then `freeze()` is called before the first request.
    Handlers are instantiated per action and read their options from `self.options`.
    """

    def __init__(self, registry: Optional[SchemeMappingRegistry] = None, options: Optional[OptionsStore] = None):
        self.registry = registry if registry is not None else SchemeMappingRegistry()
        self.options = options if options is not None else OptionsStore()
        self.default_scheme: Optional[str] = None
        self._schemes: Dict[str, AuthenticationScheme] = {}
        self._services: Dict[Any, Any] = {}
        self._frozen = False

    # ---- registration ----

    def add_scheme(self, name: str, display_name: Optional[str], handler_type: Type[AuthenticationHandler]) -> None:
        if self._frozen:
            raise RuntimeError("Authentication host is frozen; register schemes before serving requests")
        if name in self._schemes:
            raise DuplicateSchemeError(name)
        self._schemes[name] = AuthenticationScheme(name=name, display_name=display_name, handler_type=handler_type)
        logger.info("Authentication scheme registered: %s (%s)", name, handler_type.__name__)

    def add_virtual_scheme(
        self, name: str, display_name: Optional[str], configure: Callable[[VirtualSchemeOptions], None]
    ) -> None:
        self.add_scheme(name, display_name, VirtualSchemeHandler)
        self.options.configure(VirtualSchemeOptions, name, configure)

    def add_openid_connect(
        self,
        name: str,
        display_name: Optional[str] = None,
        configure: Optional[Callable[[OpenIdConnectOptions], None]] = None,
    ) -> None:
        self.add_scheme(name, display_name, OpenIdConnectHandler)
        if configure is not None:
            self.options.configure(OpenIdConnectOptions, name, configure)

    def add_cookie(
        self,
        name: str,
        display_name: Optional[str] = None,
        configure: Optional[Callable[[CookieOptions], None]] = None,
    ) -> None:
        self.add_scheme(name, display_name, CookieAuthenticationHandler)
        if configure is not None:
            self.options.configure(CookieOptions, name, configure)

    def try_add_service(self, key: Any, factory: Callable[[], Any]) -> Any:
        """Register a host-wide singleton once; later calls return the existing instance."""
        existing = self._services.get(key)
        if existing is None:
            existing = factory()
            self._services[key] = existing
        return existing

    def freeze(self) -> None:
        self.registry.freeze()
        self._frozen = True

    # ---- lookup ----

    def has_scheme(self, name: str) -> bool:
        return name in self._schemes

    def get_scheme(self, name: str) -> AuthenticationScheme:
        scheme = self._schemes.get(name)
        if scheme is None:
            raise UnknownSchemeError(name)
        return scheme

    def schemes(self) -> List[AuthenticationScheme]:
        return list(self._schemes.values())

    def handler(self, scheme: Optional[str] = None) -> AuthenticationHandler:
        name = scheme or self.default_scheme
        if not name:
            raise SchemeConfigurationError("No scheme given and no default authentication scheme configured")
        s = self.get_scheme(name)
        return s.handler_type(s, self)

    # ---- per-request actions ----

    def authenticate(self, request: Request, scheme: Optional[str] = None) -> AuthenticateResult:
        return self.handler(scheme).authenticate(request)

    def challenge(
        self, request: Request, scheme: Optional[str] = None, properties: Optional[AuthProperties] = None
    ) -> Response:
        return self.handler(scheme).challenge(request, properties or AuthProperties())

    def forbid(
        self, request: Request, scheme: Optional[str] = None, properties: Optional[AuthProperties] = None
    ) -> Response:
        return self.handler(scheme).forbid(request, properties or AuthProperties())

    def sign_in(
        self,
        request: Request,
        scheme: Optional[str],
        user: AuthUser,
        properties: Optional[AuthProperties],
        response: Response,
    ) -> None:
        self.handler(scheme).sign_in(request, user, properties or AuthProperties(), response)

    def sign_out(
        self,
        request: Request,
        scheme: Optional[str] = None,
        properties: Optional[AuthProperties] = None,
        response: Optional[Response] = None,
    ) -> Response:
        return self.handler(scheme).sign_out(request, properties or AuthProperties(), response)

    def handle_remote(self, request: Request) -> Optional[Response]:
        """Let a remote handler (OIDC callback paths) take over the request, if one owns the path."""
        for s in self._schemes.values():
            handler = s.handler_type(s, self)
            if handler.handles(request):
                logger.debug("Remote authentication request: %s -> %s", request.url.path, s.name)
                return handler.handle_remote(request)
        return None
