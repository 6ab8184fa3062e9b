"""Per-period run lock.

At most one reconciliation may be in flight for a given ``(start, end)``
period. The default backend is a process-local set guarded by a
``threading.Lock``; with ``RUN_LOCK_SETTINGS["use_redis"]`` the lock is a
Redis key written with ``SET NX EX`` so several API/worker processes share
it. If Redis cannot be reached at startup the in-process backend is used.
"""
from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterator, Optional

import redis

from invoice_recon.config import RUN_LOCK_SETTINGS
from invoice_recon.exceptions import RunInProgressError
from invoice_recon.utils.logger import get_logger

logger = get_logger(__name__)


def period_key(start: date, end: date) -> str:
    return f"{start.isoformat()}:{end.isoformat()}"


class RunLock:
    def __init__(self, redis_client: Optional[redis.Redis] = None, *, use_redis: Optional[bool] = None):
        self._key_prefix = str(RUN_LOCK_SETTINGS["key_prefix"])
        self._ttl = int(RUN_LOCK_SETTINGS["ttl_seconds"])
        self._guard = threading.Lock()
        self._held: set[str] = set()
        self._tokens: Dict[str, str] = {}
        self._redis: Optional[redis.Redis] = redis_client
        if self._redis is None and (use_redis if use_redis is not None else RUN_LOCK_SETTINGS["use_redis"]):
            self._redis = self._connect()

    def _connect(self) -> Optional[redis.Redis]:
        url = str(RUN_LOCK_SETTINGS["redis_url"])
        try:
            client = redis.from_url(url, socket_connect_timeout=2.0)
            client.ping()
            logger.info("Run lock using Redis", url=url)
            return client
        except redis.RedisError as e:
            logger.warning("Redis unavailable for run lock, using in-process lock", url=url, error=str(e))
            return None

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    def acquire(self, start: date, end: date) -> bool:
        key = period_key(start, end)
        if self._redis is not None:
            token = uuid.uuid4().hex
            acquired = bool(self._redis.set(f"{self._key_prefix}:{key}", token, nx=True, ex=self._ttl))
            if acquired:
                with self._guard:
                    self._tokens[key] = token
            return acquired
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, start: date, end: date) -> None:
        key = period_key(start, end)
        if self._redis is not None:
            with self._guard:
                token = self._tokens.pop(key, None)
            if token is None:
                return
            redis_key = f"{self._key_prefix}:{key}"
            try:
                stored = self._redis.get(redis_key)
                # Only drop our own key; an expired-and-retaken lock belongs to someone else
                if stored is not None and (stored.decode() if isinstance(stored, bytes) else stored) == token:
                    self._redis.delete(redis_key)
            except redis.RedisError as e:
                logger.warning("Failed to release Redis run lock (will expire)", key=redis_key, error=str(e))
            return
        with self._guard:
            self._held.discard(key)

    def is_locked(self, start: date, end: date) -> bool:
        key = period_key(start, end)
        if self._redis is not None:
            return bool(self._redis.exists(f"{self._key_prefix}:{key}"))
        with self._guard:
            return key in self._held

    @contextmanager
    def hold(self, start: date, end: date) -> Iterator[None]:
        """Hold the lock for the block; raises ``RunInProgressError`` when already taken."""
        if not self.acquire(start, end):
            raise RunInProgressError(start, end)
        try:
            yield
        finally:
            self.release(start, end)


__all__ = ["RunLock", "period_key"]
