import logging
from contextlib import contextmanager

import redis

from event_registry.core.config import get_lock_timeouts, get_redis_url
from event_registry.services.errors import LedgerBusyError

logger = logging.getLogger(__name__)


_redis_client = None


def get_redis_client():
    """Get the shared Redis client for locking, creating it on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(get_redis_url(), decode_responses=True)
    return _redis_client


def event_lock_key(event_id: int) -> str:
    return f"event_lock:{event_id}"


@contextmanager
def event_lock(event_id: int):
    """
    Hold the exclusive lock for one event.

    Only callers working on the same event id wait on each other. A caller that
    cannot get the lock within the blocking timeout gets LedgerBusyError.
    """
    timeout, blocking_timeout = get_lock_timeouts()
    redis_client = get_redis_client()
    lock = redis_client.lock(
        event_lock_key(event_id), timeout=timeout, blocking_timeout=blocking_timeout
    )

    try:
        acquired = lock.acquire(blocking=True, blocking_timeout=blocking_timeout)
    except redis.exceptions.RedisError as e:
        logger.exception("Lock service unavailable for event %s", event_id)
        raise LedgerBusyError("Could not acquire event lock, please try again.") from e
    if not acquired:
        logger.warning("Timed out waiting for lock on event %s", event_id)
        raise LedgerBusyError("Could not acquire event lock, please try again.")

    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            # lock expired while held; the database guards still applied
            logger.warning("Lock on event %s expired before release", event_id)
