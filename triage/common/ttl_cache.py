"""
TTL Cache

Small cache for a single value that is expensive to rebuild. Each component
owns its own instance; nothing here is module-global.
"""

import threading
import time
from typing import Callable, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """
    Holds one value for at most ``ttl_seconds``.

    ``get()`` rebuilds through the loader when the value is missing or stale.
    Callers that load asynchronously use ``peek()`` and ``put()`` instead.
    """

    def __init__(
        self,
        ttl_seconds: float,
        loader: Optional[Callable[[], T]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._loader = loader
        self._clock = clock
        self._value: Optional[T] = None
        self._cached_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _fresh(self) -> bool:
        return self._cached_at is not None and self._clock() - self._cached_at < self._ttl

    def peek(self) -> Tuple[bool, Optional[T]]:
        """Return (hit, value) without calling the loader."""
        with self._lock:
            if self._fresh():
                return True, self._value
            return False, None

    def put(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._cached_at = self._clock()

    def get(self) -> T:
        if self._loader is None:
            raise RuntimeError("TTLCache has no loader; use peek()/put()")
        with self._lock:
            if self._fresh():
                return self._value
            self._value = self._loader()
            self._cached_at = self._clock()
            return self._value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._cached_at = None
