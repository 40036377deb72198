"""互斥锁：保证同一时刻只有一个全量重建索引任务在运行。

优先使用 Redis 实现跨进程互斥，Redis 不可用时回退到进程内锁。
"""

from __future__ import annotations

import threading
from typing import Optional

import redis
from redis.exceptions import LockError, RedisError

from app.packages.wiki.core.config import get_settings
from app.packages.wiki.core.logger import logger


class LockBackend:
    """锁后端基类，定义非阻塞获取与释放两个操作。"""

    def acquire(self, key: str, ttl_seconds: int) -> bool:  # pragma: no cover - interface definition
        raise NotImplementedError

    def release(self, key: str) -> None:  # pragma: no cover
        raise NotImplementedError


class RedisLockBackend(LockBackend):
    """基于 Redis 的锁后端，TTL 到期后自动释放，避免进程崩溃导致死锁。"""

    def __init__(self, url: str) -> None:
        self._client = redis.Redis.from_url(url, decode_responses=True)
        self._client.ping()
        self._held: dict[str, redis.lock.Lock] = {}
        self._guard = threading.Lock()

    def acquire(self, key: str, ttl_seconds: int) -> bool:
        lock = self._client.lock(key, timeout=ttl_seconds, blocking=False)
        if not lock.acquire(blocking=False):
            return False
        with self._guard:
            self._held[key] = lock
        return True

    def release(self, key: str) -> None:
        with self._guard:
            lock = self._held.pop(key, None)
        if lock is None:
            return
        try:
            lock.release()
        except LockError:
            # TTL 已过期，锁已被 Redis 回收
            logger.warning("Rebuild lock %s expired before release", key)


class InMemoryLockBackend(LockBackend):
    """进程内锁，用于测试或缺少 Redis 时的回退实现。"""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def acquire(self, key: str, ttl_seconds: int) -> bool:
        return self._lock_for(key).acquire(blocking=False)

    def release(self, key: str) -> None:
        lock = self._lock_for(key)
        if lock.locked():
            lock.release()


_backend: Optional[LockBackend] = None


def get_lock_backend() -> LockBackend:
    global _backend
    if _backend is not None:
        return _backend

    settings = get_settings()
    if (settings.rebuild_lock_backend or "").strip().lower() == "memory":
        _backend = InMemoryLockBackend()
        return _backend

    try:
        backend = RedisLockBackend(settings.redis_url)
        logger.info("Rebuild lock initialized with Redis at %s", settings.redis_url)
        _backend = backend
    except RedisError as exc:  # pragma: no cover - fallback path
        logger.warning("Redis unavailable (%s), falling back to in-process rebuild lock", exc)
        _backend = InMemoryLockBackend()
    return _backend
