"""
Storage layer tests — MemoryStorage expiry, RedisStorage command mapping
and the never-raise JSON helpers.
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tracker.cache import (
    CHECKPOINT_TTL,
    MemoryStorage,
    RedisStorage,
    clear_checkpoint,
    discard,
    get_checkpoint,
    make_checkpoint_key,
    read_json,
    set_checkpoint,
    write_json,
)


class EpochClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_memory_storage_expires_entries() -> None:
    clock = EpochClock()
    storage = MemoryStorage(clock)
    await storage.set("k", "v", ttl=10)
    await storage.set("forever", "v")

    clock.now += 9
    assert await storage.get("k") == "v"
    clock.now += 1
    assert await storage.get("k") is None
    assert await storage.get("forever") == "v"


@pytest.mark.asyncio
async def test_redis_storage_uses_setex_only_with_ttl() -> None:
    client = AsyncMock()
    storage = RedisStorage(client)

    await storage.set("a", "1", ttl=60)
    await storage.set("b", "2")
    await storage.remove("a")

    client.setex.assert_awaited_once_with("a", 60, "1")
    client.set.assert_awaited_once_with("b", "2")
    client.delete.assert_awaited_once_with("a")


@pytest.mark.asyncio
async def test_read_json_drops_corrupt_entry() -> None:
    storage = MemoryStorage()
    await storage.set("k", "{broken")
    assert await read_json(storage, "k") is None
    assert "k" not in storage


@pytest.mark.asyncio
async def test_helpers_survive_redis_outage() -> None:
    client = AsyncMock()
    client.get.side_effect = RedisConnectionError("down")
    client.setex.side_effect = RedisConnectionError("down")
    client.delete.side_effect = RedisConnectionError("down")
    storage = RedisStorage(client)

    assert await read_json(storage, "k") is None
    assert await write_json(storage, "k", {"a": 1}, ttl=5) is False
    await discard(storage, "k")


@pytest.mark.asyncio
async def test_checkpoint_merges_steps_with_ttl() -> None:
    clock = EpochClock()
    storage = MemoryStorage(clock)

    await set_checkpoint(storage, "s1", "basic_info", {"truck_id": "t"})
    merged = await set_checkpoint(storage, "s1", "categories", {"category1": 0})

    assert merged == {"basic_info": {"truck_id": "t"}, "categories": {"category1": 0}}
    assert make_checkpoint_key("s1") == "wizard:s1"

    clock.now += CHECKPOINT_TTL
    assert await get_checkpoint(storage, "s1") == {}


@pytest.mark.asyncio
async def test_clear_checkpoint() -> None:
    storage = MemoryStorage()
    await set_checkpoint(storage, "s1", "basic_info", {})
    await clear_checkpoint(storage, "s1")
    assert await get_checkpoint(storage, "s1") == {}
