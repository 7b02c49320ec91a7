"""
Key-value store port used for state shared across processes:
rate-limit counters, rapid-payment counters, one-time nonces and
reputation lists.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def exists(self, key: str) -> bool: ...

    async def incr(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """Atomically increment; ``ttl`` is applied only when the key is created."""
        ...

    async def pop(self, key: str) -> Any:
        """Atomically read and delete."""
        ...
