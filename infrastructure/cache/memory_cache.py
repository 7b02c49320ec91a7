"""In-process KeyValueStore for tests and single-worker deployments.

Same semantics as RedisCache (fixed-window incr, atomic pop) but the state
is per-process, so it must not back rate limits shared across workers.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional


class InMemoryCache:
    def __init__(self, *, clock: Callable[[], float] = time.time, default_ttl: Optional[int] = None) -> None:
        self._clock = clock
        self._default_ttl = default_ttl
        self._data: dict[str, tuple[Any, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _alive(self, key: str) -> bool:
        item = self._data.get(key)
        if item is None:
            return False
        _, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return False
        return True

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        ttl = self._default_ttl if ttl is None else ttl
        return self._clock() + ttl if ttl and ttl > 0 else None

    async def get(self, key: str) -> Any:
        if not self._alive(key):
            return None
        return self._data[key][0]

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._data[key] = (value, self._expiry(ttl))

    async def delete(self, key: str) -> bool:
        alive = self._alive(key)
        self._data.pop(key, None)
        return alive

    async def exists(self, key: str) -> bool:
        return self._alive(key)

    async def incr(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        async with self._lock:
            if self._alive(key):
                value, expires_at = self._data[key]
                value = int(value) + amount
            else:
                value, expires_at = amount, self._expiry(ttl or 0)
            self._data[key] = (value, expires_at)
            return value

    async def pop(self, key: str) -> Any:
        async with self._lock:
            if not self._alive(key):
                return None
            value, _ = self._data.pop(key)
            return value

    def clear(self) -> None:
        self._data.clear()
