"""
Redis mutex serialising schedule writes per professional.

The mutex is a fast-fail gate in front of the database row lock taken by the
booking repository. When Redis is unreachable the gate fails open and the row
lock remains the correctness guarantee.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Iterator, Optional

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


def _lock_key(professional_id: str) -> str:
    return f"{settings.lock_namespace}:lock:professional:{professional_id}:schedule"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if settings.is_testing:
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=1,
            )
            client.ping()
        except Exception as exc:
            logger.warning("professional_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def acquire_professional_lock(professional_id: str, ttl_s: int = 30) -> bool:
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_professional_lock("acquire", "redis_unavailable")
        return True
    try:
        acquired = bool(client.set(_lock_key(professional_id), str(time.time()), nx=True, ex=ttl_s))
        prometheus_metrics.record_professional_lock("acquire", "success" if acquired else "blocked")
        return acquired
    except Exception as exc:
        prometheus_metrics.record_professional_lock("acquire", "error")
        logger.warning(
            "professional_lock_acquire_failed",
            extra={
                "professional_id": professional_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return True


def release_professional_lock(professional_id: str) -> None:
    client = _get_sync_redis()
    if client is None:
        return
    try:
        deleted = client.delete(_lock_key(professional_id))
        prometheus_metrics.record_professional_lock("release", "success" if deleted else "not_found")
    except Exception as exc:
        prometheus_metrics.record_professional_lock("release", "error")
        logger.warning(
            "professional_lock_release_failed",
            extra={
                "professional_id": professional_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )


@contextmanager
def professional_lock(professional_id: str, ttl_s: int = 30) -> Iterator[bool]:
    acquired = acquire_professional_lock(professional_id, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_professional_lock(professional_id)
