"""
Distributed lock tests against the mock Redis.
"""

import pytest

from glassbox_backend.app.core.exceptions import ConcurrentModificationError
from glassbox_backend.app.services.locking import (
    DistributedLock, merchant_lock_key, merchant_schema_lock, settlement_lock_key
)


def test_lock_keys():
    assert merchant_lock_key("M-001") == "lock:fee-schema:merchant:M-001"
    assert settlement_lock_key(2024, 3) == "lock:settlement:2024-03"


@pytest.mark.asyncio
async def test_only_one_holder(redis_client_session):
    first = DistributedLock(redis_client_session, "lock:test", 30)
    second = DistributedLock(redis_client_session, "lock:test", 30)

    assert await first.acquire() is True
    assert await second.acquire() is False
    assert await first.holder() == first.token

    assert await first.release() is True
    assert await second.acquire() is True


@pytest.mark.asyncio
async def test_release_leaves_foreign_lock(redis_client_session):
    stale = DistributedLock(redis_client_session, "lock:test", 30, token="expired-owner")
    await redis_client_session.set("lock:test", "new-owner")

    assert await stale.release() is False
    assert redis_client_session.store["lock:test"] == "new-owner"


@pytest.mark.asyncio
async def test_extend_renews_only_our_lock(redis_client_session):
    lock = DistributedLock(redis_client_session, "lock:test", 30)
    assert await lock.acquire() is True
    redis_client_session.ttls["lock:test"] = 1

    assert await lock.extend() is True
    assert redis_client_session.ttls["lock:test"] == 30

    # Expired and taken by someone else
    await redis_client_session.delete("lock:test")
    assert await lock.extend() is False
    await redis_client_session.set("lock:test", "new-owner")
    assert await lock.extend() is False
    assert redis_client_session.store["lock:test"] == "new-owner"


@pytest.mark.asyncio
async def test_wait_gives_up(redis_client_session):
    await redis_client_session.set("lock:test", "busy")

    lock = DistributedLock(redis_client_session, "lock:test", 30)
    assert await lock.acquire_with_wait(0.1) is False


@pytest.mark.asyncio
async def test_merchant_schema_lock_is_released_on_error(redis_client_session):
    with pytest.raises(RuntimeError):
        async with merchant_schema_lock(redis_client_session, "M-001"):
            assert merchant_lock_key("M-001") in redis_client_session.store
            raise RuntimeError("write failed")

    assert merchant_lock_key("M-001") not in redis_client_session.store


@pytest.mark.asyncio
async def test_merchant_schema_lock_times_out(redis_client_session, monkeypatch):
    from glassbox_backend.app.core.config import settings
    monkeypatch.setattr(settings, "schema_lock_wait_seconds", 0.1)
    await redis_client_session.set(merchant_lock_key("M-001"), "other")

    with pytest.raises(ConcurrentModificationError):
        async with merchant_schema_lock(redis_client_session, "M-001"):
            pass
