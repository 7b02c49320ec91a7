"""
Per-adapter session token cache.

One instance per adapter. ``ensure_valid`` refreshes when the token is
missing or within ``safety_margin`` seconds of expiry; refresh runs under an
asyncio lock so a shared adapter fetches once. A failed fetch leaves the
cache empty and raises NetworkError: a stale token is never reused.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from application.dtos.payments import ProviderToken
from core.logging_config import get_logger
from domain.common.exceptions import NetworkError


logger = get_logger(__name__)

DEFAULT_SAFETY_MARGIN = 60


class TokenCache:
    def __init__(
        self,
        fetch: Callable[[], Awaitable[ProviderToken]],
        *,
        provider: str = "",
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetch = fetch
        self._provider = provider
        self._safety_margin = safety_margin
        self._clock = clock
        self._token: Optional[ProviderToken] = None
        self._lock = asyncio.Lock()

    @property
    def token(self) -> Optional[ProviderToken]:
        return self._token

    def is_valid(self) -> bool:
        if self._token is None:
            return False
        return self._clock() < self._token.expires_at - self._safety_margin

    def invalidate(self) -> None:
        self._token = None

    async def ensure_valid(self) -> str:
        if self.is_valid():
            return self._token.value  # type: ignore[union-attr]
        async with self._lock:
            # Another coroutine may have refreshed while we waited
            if self.is_valid():
                return self._token.value  # type: ignore[union-attr]
            self._token = None
            try:
                token = await self._fetch()
            except NetworkError as exc:
                logger.warning("payment_token_refresh_failed", provider=self._provider, error=exc.message)
                raise
            if not token.value:
                raise NetworkError("Token endpoint returned an empty token", provider=self._provider or None)
            self._token = token
            logger.info("payment_token_refreshed", provider=self._provider, expires_at=token.expires_at)
            return token.value
