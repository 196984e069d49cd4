"""
Generic Cache - thread-safe key/value store with optional expiry.

Building block for the function service cache indices. Unlike a plain dict,
`set()` refuses to overwrite and reports the existing value, which lets callers
detect benign insert races.
"""

import logging
import math
import threading
from typing import Dict, Generic, Hashable, TypeVar

from cachetools import Cache as _LRUBase
from cachetools import TTLCache

from .exceptions import NameExistsError, NotFoundError

logger = logging.getLogger("common.cache")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Cache(Generic[K, V]):
    """
    Thread-safe cache using cachetools.

    Args:
        max_size: Maximum number of entries (default: unbounded)
        ttl: Time-to-live in seconds; 0 disables expiry
    """

    def __init__(self, max_size: float = math.inf, ttl: float = 0):
        self.max_size = max_size
        self.ttl = ttl
        if ttl > 0:
            self._cache = TTLCache(maxsize=max_size, ttl=ttl)
        else:
            self._cache = _LRUBase(maxsize=max_size)
        self._lock = threading.RLock()

    def get(self, key: K) -> V:
        with self._lock:
            try:
                return self._cache[key]
            except KeyError:
                raise NotFoundError(f"key '{key}' not found in cache") from None

    def set(self, key: K, value: V) -> None:
        """Insert a new key. Raises NameExistsError carrying the current value."""
        with self._lock:
            if key in self._cache:
                raise NameExistsError(
                    f"key '{key}' already exists", existing=self._cache[key]
                )
            self._cache[key] = value

    def upsert(self, key: K, value: V) -> None:
        with self._lock:
            self._cache[key] = value

    def delete(self, key: K) -> None:
        with self._lock:
            try:
                del self._cache[key]
            except KeyError:
                raise NotFoundError(f"key '{key}' not found in cache") from None

    def copy(self) -> Dict[K, V]:
        """Snapshot of the current contents."""
        with self._lock:
            return dict(self._cache.items())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
