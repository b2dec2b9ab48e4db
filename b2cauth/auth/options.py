from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OptionsStore:
    """
    Named, lazily-built option objects.

    `configure(type, name, action)` queues an action for one name; `configure_all(type, action)`
    queues an action that receives `(name, options)` for every name of that type and runs after
    the named ones. `get(type, name)` builds the instance on first use (default constructor,
    then actions in registration order) and memoizes it.

    Option objects are built from plain registration-time callbacks, so callbacks may call
    `get()` for other option types (the lock is re-entrant).
    """

    def __init__(self) -> None:
        self._named: Dict[Tuple[type, str], List[Callable[[Any], None]]] = defaultdict(list)
        self._all: Dict[type, List[Callable[[str, Any], None]]] = defaultdict(list)
        self._cache: Dict[Tuple[type, str], Any] = {}
        self._lock = threading.RLock()

    def configure(self, options_type: Type[T], name: str, action: Callable[[T], None]) -> None:
        self._named[(options_type, name)].append(action)

    def configure_all(self, options_type: Type[T], action: Callable[[str, T], None]) -> None:
        self._all[options_type].append(action)

    def get(self, options_type: Type[T], name: str) -> T:
        key = (options_type, name)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            options = options_type()
            for action in self._named.get(key, []):
                action(options)
            for action_all in self._all.get(options_type, []):
                action_all(name, options)
            self._cache[key] = options
            logger.debug("Options built: %s[%s]", options_type.__name__, name)
            return options

    def invalidate(self, options_type: Type[Any], name: Optional[str] = None) -> None:
        with self._lock:
            if name is not None:
                self._cache.pop((options_type, name), None)
                return
            for key in [k for k in self._cache if k[0] is options_type]:
                del self._cache[key]
