"""Redis缓存实现（跨进程共享：限流计数、一次性 nonce、信誉名单）"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from redis import asyncio as aioredis

from core.config import settings


# INCRBY + EXPIRE in one round trip; TTL only when the window opens so the
# window stays fixed instead of sliding with every attempt.
_INCR_WITH_WINDOW = """
local current = redis.call('INCRBY', KEYS[1], ARGV[1])
if current == tonumber(ARGV[1]) and tonumber(ARGV[2]) > 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return current
"""


def _json_dumps(value: Any) -> str:
    """将任意对象序列化为JSON字符串"""
    return json.dumps(value, default=str)


def _json_loads(value: Optional[str]) -> Any:
    """将JSON字符串反序列化为对象"""
    if value is None:
        return None
    return json.loads(value)


class RedisCache:
    """基于Redis的简单缓存实现"""

    def __init__(self, client: aioredis.Redis, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace.strip(":")
        self._incr_script = client.register_script(_INCR_WITH_WINDOW)

    def _format_key(self, key: str) -> str:
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Any:
        return _json_loads(await self._client.get(self._format_key(key)))

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = _json_dumps(value)
        expire = settings.redis.default_ttl if ttl is None else ttl
        formatted_key = self._format_key(key)
        if expire and expire > 0:
            await self._client.set(formatted_key, payload, ex=expire)
        else:
            await self._client.set(formatted_key, payload)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self._format_key(key)))

    async def exists(self, key: str) -> bool:
        return bool(await self._client.exists(self._format_key(key)))

    async def incr(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        value = await self._incr_script(keys=[self._format_key(key)], args=[amount, ttl or 0])
        return int(value)

    async def pop(self, key: str) -> Any:
        return _json_loads(await self._client.getdel(self._format_key(key)))


_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisCache] = None
_lock = asyncio.Lock()


async def init_redis_cache(namespace: Optional[str] = None) -> RedisCache:
    """初始化Redis缓存实例"""
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis缓存")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
        )

        _redis_client = client
        _cache_instance = RedisCache(
            client=client,
            namespace=namespace or settings.redis.namespace,
        )
        return _cache_instance


async def get_redis_cache() -> RedisCache:
    """获取全局Redis缓存实例"""
    if _cache_instance is None:
        return await init_redis_cache()
    return _cache_instance


async def shutdown_redis_cache() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        _cache_instance = None
