from __future__ import annotations

from typing import Optional


class SchemeConfigurationError(ValueError):
    """Base class for authentication scheme wiring mistakes (always fatal at startup)."""


class InvalidSchemeNameError(SchemeConfigurationError):
    pass


class DuplicateSchemeError(SchemeConfigurationError):
    def __init__(self, scheme: str):
        super().__init__(f"Authentication scheme already registered: {scheme!r}")
        self.scheme = scheme


class SchemeNotFoundError(SchemeConfigurationError, LookupError):
    def __init__(self, scheme: str, message: Optional[str] = None):
        super().__init__(message or f"No scheme mapping registered for {scheme!r}")
        self.scheme = scheme


class UnknownSchemeError(SchemeNotFoundError):
    """Raised by the host when an action targets a scheme it has no handler for."""

    def __init__(self, scheme: str):
        super().__init__(scheme, f"No authentication handler registered for scheme {scheme!r}")


class OidcProtocolError(ValueError):
    """
    OpenID Connect exchange failed (bad discovery document, rejected code, invalid token, ...).

    `error` / `error_description` carry the provider's error parameters when the failure
    came back on the callback URL.
    """

    def __init__(self, message: str, *, error: Optional[str] = None, error_description: Optional[str] = None):
        super().__init__(message)
        self.error = error
        self.error_description = error_description
