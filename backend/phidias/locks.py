from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import logging
import os

from django.conf import settings

logger = logging.getLogger(__name__)


class SyncAlreadyRunning(RuntimeError):
    pass


@dataclass
class _NoopLock:
    def acquire(self, blocking: bool = True, blocking_timeout: float | None = None) -> bool:
        return True

    def release(self) -> None:
        return None


def _get_redis_url() -> str:
    return (
        getattr(settings, "CONVIVENCIA_REDIS_URL", "")
        or os.getenv("CELERY_BROKER_URL", "")
        or os.getenv("REDIS_URL", "")
    )


def _redis_lock(key: str, timeout: int):
    url = _get_redis_url()
    if not url or not url.startswith(("redis://", "rediss://")):
        return None

    import redis

    client = redis.Redis.from_url(url)
    return client.lock(name=key, timeout=timeout)


def sync_lock_key(school_year_id: int) -> str:
    return f"convivencia:phidias-sync:{school_year_id}"


@contextmanager
def sync_lock(school_year_id: int, *, timeout: int | None = None):
    """Una sola sincronización a la vez por año escolar.

    Usa un lock de Redis si hay URL configurada; en tests/local es un no-op.
    Si otro proceso tiene el lock lanza SyncAlreadyRunning sin esperar.
    """

    key = sync_lock_key(school_year_id)
    lock_timeout = timeout or getattr(settings, "PHIDIAS_SYNC_LOCK_TIMEOUT_SECONDS", 3600)
    lock = _redis_lock(key, lock_timeout) or _NoopLock()

    if not lock.acquire(blocking=False):
        raise SyncAlreadyRunning(f"Ya hay una sincronización en curso para el año escolar {school_year_id}.")

    try:
        yield
    finally:
        try:
            lock.release()
        except Exception:
            # El lock pudo expirar durante una ejecución larga
            logger.warning("phidias_sync.lock_release_failed", extra={"key": key})
