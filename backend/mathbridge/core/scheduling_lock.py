"""
Redis mutex guarding schedule mutations.

Keys are per contract (``contract:{id}:mutex``), per child
(``child:{id}:contracts:mutex``) and per tutor (``tutor:{id}:mutex``). Any
write that puts a tutor on a slot also holds that tutor's key. Acquisition is
try-once: a held lock raises SchedulingLockBusyException so the caller can
retry later. When Redis cannot be reached the lock fails open; row locks,
version tokens and store constraints still reject conflicting writes. After a
failed connect, Redis is not tried again for ``redis_retry_interval_s``
seconds.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Iterator, List, Optional

from redis import Redis
from redis.exceptions import RedisError

from mathbridge.core.config import settings
from mathbridge.core.exceptions import SchedulingLockBusyException
from mathbridge.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()
_SYNC_REDIS_RETRY_AT = 0.0


def contract_lock_key(contract_id: str) -> str:
    return f"contract:{contract_id}:mutex"


def child_lock_key(child_id: str) -> str:
    return f"child:{child_id}:contracts:mutex"


def tutor_lock_key(tutor_id: str) -> str:
    return f"tutor:{tutor_id}:mutex"


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS, _SYNC_REDIS_RETRY_AT
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    if time.monotonic() < _SYNC_REDIS_RETRY_AT:
        return None
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        if time.monotonic() < _SYNC_REDIS_RETRY_AT:
            return None
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=settings.redis_socket_timeout_s,
                socket_connect_timeout=settings.redis_socket_timeout_s,
            )
            client.ping()
        except RedisError as exc:
            logger.warning("scheduling_lock_redis_unavailable: %s", exc)
            _SYNC_REDIS_RETRY_AT = time.monotonic() + settings.redis_retry_interval_s
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def acquire_lock(key: str, ttl_s: Optional[int] = None) -> bool:
    """Try once to take ``key``. Returns True when held (or when failing open)."""
    ttl = ttl_s or settings.scheduling_lock_ttl_s
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_scheduling_lock("acquire", "redis_unavailable")
        logger.warning("scheduling_lock_redis_unavailable", extra={"lock_key": key})
        return True
    try:
        acquired = bool(client.set(_namespaced_key(key), str(time.time()), nx=True, ex=ttl))
    except RedisError as exc:
        prometheus_metrics.record_scheduling_lock("acquire", "error")
        logger.warning(
            "scheduling_lock_acquire_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )
        return True
    prometheus_metrics.record_scheduling_lock("acquire", "success" if acquired else "blocked")
    return acquired


def release_lock(key: str) -> None:
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_scheduling_lock("release", "redis_unavailable")
        return
    try:
        deleted = client.delete(_namespaced_key(key))
    except RedisError as exc:
        prometheus_metrics.record_scheduling_lock("release", "error")
        logger.warning(
            "scheduling_lock_release_failed",
            extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
        )
        return
    prometheus_metrics.record_scheduling_lock("release", "success" if deleted else "not_found")


@contextmanager
def scheduling_lock(*keys: str, ttl_s: Optional[int] = None) -> Iterator[List[str]]:
    """
    Hold every key in ``keys`` for the duration of the block.

    Keys are taken in sorted order so two callers never wait on each other in
    opposite order. If any key is busy, the ones already taken are released and
    SchedulingLockBusyException is raised.
    """
    if not settings.scheduling_lock_enabled:
        yield []
        return

    held: List[str] = []
    try:
        for key in sorted(set(keys)):
            if not acquire_lock(key, ttl_s=ttl_s):
                logger.info("scheduling_lock_busy", extra={"lock_key": key})
                raise SchedulingLockBusyException(key)
            held.append(key)
        yield held
    finally:
        for key in reversed(held):
            release_lock(key)
