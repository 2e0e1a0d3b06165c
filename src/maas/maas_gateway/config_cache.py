"""Time-bounded, single-flight cache for model endpoint configuration."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from maas.maas_gateway.logging import log_debug, log_info

_LOGGER_NAME = "maas.maas_gateway.config_cache"

T = TypeVar("T")


class ModelConfigCache(Generic[T]):
    """Holds one value for ``ttl_seconds``, then rebuilds it wholesale.

    There is no partial invalidation: a refresh replaces the entry entirely.
    ``get_or_compute`` is single-flight: while one caller is computing, other
    callers wait on the same lock and then read the fresh entry instead of
    issuing their own upstream probes.

    Example:
        ```python
        cache: ModelConfigCache[ModelConfigSnapshot] = ModelConfigCache(600)
        snapshot = await cache.get_or_compute(lambda: detector.detect(...))
        ```
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "model_configs",
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._value: T | None = None
        self._stored_at: float | None = None
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    def _is_fresh(self) -> bool:
        if self._value is None or self._stored_at is None:
            return False
        return (self._clock() - self._stored_at) < self.ttl_seconds

    def get(self) -> T | None:
        """Return the cached value if it has not expired, else None."""
        if self._is_fresh():
            return self._value
        return None

    def set(self, value: T) -> None:
        self._value = value
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._value = None
        self._stored_at = None

    @property
    def refreshing(self) -> bool:
        return self._lock.locked()

    async def get_or_compute(self, compute: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value, computing it at most once per expiry."""
        value = self.get()
        if value is not None:
            self.hits += 1
            log_debug(
                "Using cached value",
                context={"cache": self.name},
                logger_name=_LOGGER_NAME,
            )
            return value

        async with self._lock:
            value = self.get()
            if value is not None:
                self.hits += 1
                return value

            self.misses += 1
            log_info(
                "Cache miss, refreshing",
                context={"cache": self.name, "ttl_seconds": self.ttl_seconds},
                logger_name=_LOGGER_NAME,
            )
            value = await compute()
            self.set(value)
            return value
