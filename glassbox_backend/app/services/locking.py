"""
Distributed locking service using Redis.

Serializes fee schema mutations per merchant and settlement generation
per period across API workers.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from glassbox_backend.app.core.config import settings
from glassbox_backend.app.core.exceptions import ConcurrentModificationError

logger = logging.getLogger("glassbox.locks")

# Redis key prefixes
SCHEMA_LOCK_PREFIX = "lock:fee-schema:merchant:"
SETTLEMENT_LOCK_PREFIX = "lock:settlement:"

POLL_INTERVAL_SECONDS = 0.05


def merchant_lock_key(merchant_id: str) -> str:
    return f"{SCHEMA_LOCK_PREFIX}{merchant_id}"


def settlement_lock_key(year: int, month: int) -> str:
    return f"{SETTLEMENT_LOCK_PREFIX}{year}-{month:02d}"


class DistributedLock:
    """
    A Redis lock owned by a random token.

    Acquired with SET NX EX so a crashed holder never blocks forever;
    released only by the holder of the token.
    """

    def __init__(self, redis, key: str, ttl_seconds: int, token: Optional[str] = None):
        self.redis = redis
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.token = token or uuid.uuid4().hex

    async def acquire(self) -> bool:
        """Try once. Returns True if this instance now holds the lock."""
        acquired = await self.redis.set(self.key, self.token, nx=True, ex=self.ttl_seconds)
        return bool(acquired)

    async def acquire_with_wait(self, wait_seconds: float) -> bool:
        """Poll until acquired or `wait_seconds` elapsed."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds
        while True:
            if await self.acquire():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(POLL_INTERVAL_SECONDS)

    async def extend(self) -> bool:
        """
        Reset the TTL if the lock is still ours (SET XX EX with our token).

        Returns False when the lock expired or was taken over.
        """
        if await self.holder() != self.token:
            return False
        extended = await self.redis.set(self.key, self.token, xx=True, ex=self.ttl_seconds)
        return bool(extended)

    async def release(self) -> bool:
        """
        Release the lock if it is still ours.

        Returns False when the lock expired or was taken over.
        """
        holder = await self.redis.get(self.key)
        if isinstance(holder, bytes):
            holder = holder.decode()
        if holder != self.token:
            logger.warning("Lock %s no longer held by this owner, skipping release", self.key)
            return False
        await self.redis.delete(self.key)
        return True

    async def holder(self) -> Optional[str]:
        value = await self.redis.get(self.key)
        if isinstance(value, bytes):
            value = value.decode()
        return value


@asynccontextmanager
async def merchant_schema_lock(redis, merchant_id: str):
    """
    Hold the fee schema lock of a merchant for the duration of the block.

    Usage:
        async with merchant_schema_lock(redis, "M-1"):
            ...read siblings, validate, write...

    Raises:
        ConcurrentModificationError: If the lock is not obtained within
            `schema_lock_wait_seconds`
    """
    lock = DistributedLock(redis, merchant_lock_key(merchant_id), settings.schema_lock_ttl_seconds)
    if not await lock.acquire_with_wait(settings.schema_lock_wait_seconds):
        raise ConcurrentModificationError(f"Fee schemas of merchant {merchant_id}")
    try:
        yield lock
    finally:
        await lock.release()
