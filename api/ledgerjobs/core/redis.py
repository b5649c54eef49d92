import logging
from collections.abc import Iterator
from contextlib import contextmanager

import redis

from ledgerjobs.core.config import settings
from ledgerjobs.core.errors import AccountBusyError

logger = logging.getLogger(__name__)

# Shared sync Redis client for worker processes (created once, reused across tasks)
_redis: redis.Redis | None = None


def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


# ─── Per-account detection lock ───────────────────────────────────────────────

_LOCK_PREFIX = "recurring-detection:"


@contextmanager
def account_lock(account_id: str, client: redis.Redis | None = None) -> Iterator[None]:
    """
    Serialize detection runs for one bank account.

    Non-blocking: raises AccountBusyError when another run holds the lock.
    The lock expires after ``account_lock_timeout`` so a crashed worker
    cannot block the account forever.
    """
    r = client or get_redis()
    lock = r.lock(f"{_LOCK_PREFIX}{account_id}", timeout=settings.account_lock_timeout)
    if not lock.acquire(blocking=False):
        raise AccountBusyError(account_id)
    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            # Expired while we were running; another run may own it now
            logger.warning("Detection lock for account %s expired before release", account_id)
