from redis import Redis
from typing import Optional
from redis.lock import Lock

from busbook.src import exceptions
from busbook.src.constants import (
    REDIS_HOST,
    REDIS_PORT,
    REDIS_PASSWORD,
    MUTEX_LOCK_TIMEOUT,
    MUTEX_LOCK_MAX_WAIT_TIME,
    RATE_LIMIT_WINDOW,
    RATE_LIMIT_MAX_REQUESTS,
)

# Redis client (single connection)
redisClient = Redis(
    host=REDIS_HOST,
    port=REDIS_PORT,
    password=REDIS_PASSWORD,
    decode_responses=True,
)


def acquireLock(
    tableName: str,
    pk: Optional[int] = None,
    timeOut: int = MUTEX_LOCK_TIMEOUT,
    blockingTimeOut: int = MUTEX_LOCK_MAX_WAIT_TIME,
) -> Lock:
    """
    Acquire a Redis-based mutex lock for a table or specific row.

    Args:
        tableName (str): Name of the table/resource to lock.
        pk (Optional[int]): Optional primary key for row-level locking.
        timeOut (int): Lock expiration in seconds (auto-released after this).
        blockingTimeOut (int): Maximum time (in seconds) to wait for lock acquisition.

    Returns:
        Lock: A Redis lock object if successfully acquired.

    Raises:
        exceptions.LockAcquireTimeout: If the lock could not be acquired within blockingTimeOut.
    """
    try:
        lockName = f"lock:{tableName}" if pk is None else f"lock:{tableName}:{pk}"
        lock = redisClient.lock(lockName, timeout=timeOut)
        if lock.acquire(blocking=True, blocking_timeout=blockingTimeOut):
            return lock
        raise exceptions.LockAcquireTimeout()
    except Exception as e:
        exceptions.handle(e)


def releaseLock(lock: Optional[Lock]) -> None:
    """
    Release a previously acquired Redis lock.

    Does nothing for a missing lock or a lock which expired meanwhile.
    """
    if lock and lock.locked() and lock.owned():
        lock.release()


def hitRateLimit(
    identity: str,
    window: int = RATE_LIMIT_WINDOW,
    maxRequests: int = RATE_LIMIT_MAX_REQUESTS,
) -> int:
    """
    Count a request against the fixed window of a client.

    The counter lives in Redis, so every server instance shares it. The
    first hit of a window sets the expiry, the counter disappears with it.

    Args:
        identity (str): Client identity (usually the client address).
        window (int): Window length in seconds.
        maxRequests (int): Requests allowed within one window.

    Returns:
        int: Number of requests seen in the current window.

    Raises:
        exceptions.TooManyRequests: If the client exceeded the limit.
        exceptions.RedisDBError: If Redis is not reachable.
    """
    try:
        key = f"ratelimit:{identity}"
        hits = redisClient.incr(key)
        if hits == 1:
            redisClient.expire(key, window)
        if hits > maxRequests:
            retryAfter = redisClient.ttl(key)
            raise exceptions.TooManyRequests(retryAfter if retryAfter > 0 else window)
        return hits
    except Exception as e:
        exceptions.handle(e)
