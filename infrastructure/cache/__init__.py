"""缓存层对外暴露的接口"""
from .memory_cache import InMemoryCache
from .redis_cache import (
    RedisCache,
    init_redis_cache,
    shutdown_redis_cache,
    get_redis_cache,
)

__all__ = [
    "InMemoryCache",
    "RedisCache",
    "init_redis_cache",
    "shutdown_redis_cache",
    "get_redis_cache",
]
