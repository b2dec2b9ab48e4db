from __future__ import annotations

import logging
from typing import Dict, Iterator, Optional

from b2cauth.auth.errors import DuplicateSchemeError, SchemeNotFoundError
from b2cauth.auth.models import SchemeMapping

logger = logging.getLogger(__name__)


class SchemeMappingRegistry:
    """
    Virtual scheme -> (OpenID Connect scheme, cookie scheme).

    Populated once per virtual scheme while the app is being configured, then frozen and
    read concurrently by request handlers. Reads never take a lock; `freeze()` is the
    hand-off point between the two phases.
    """

    def __init__(self) -> None:
        self._mappings: Dict[str, SchemeMapping] = {}
        self._frozen = False

    def add(self, mapping: SchemeMapping) -> None:
        if self._frozen:
            raise RuntimeError("Scheme mapping registry is frozen; register schemes before serving requests")
        if mapping.virtual_scheme in self._mappings:
            raise DuplicateSchemeError(mapping.virtual_scheme)
        self._mappings[mapping.virtual_scheme] = mapping
        logger.debug(
            "Scheme mapping added: %s -> oidc=%s cookie=%s",
            mapping.virtual_scheme,
            mapping.openid_connect_scheme,
            mapping.cookie_scheme,
        )

    def resolve(self, virtual_scheme: str) -> SchemeMapping:
        mapping = self._mappings.get(virtual_scheme)
        if mapping is None:
            raise SchemeNotFoundError(virtual_scheme)
        return mapping

    def find_by_openid_connect_scheme(self, name: str) -> Optional[SchemeMapping]:
        for m in self._mappings.values():
            if m.openid_connect_scheme == name:
                return m
        return None

    def find_by_cookie_scheme(self, name: str) -> Optional[SchemeMapping]:
        for m in self._mappings.values():
            if m.cookie_scheme == name:
                return m
        return None

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, virtual_scheme: object) -> bool:
        return virtual_scheme in self._mappings

    def __len__(self) -> int:
        return len(self._mappings)

    def __iter__(self) -> Iterator[SchemeMapping]:
        return iter(list(self._mappings.values()))
