"""
cache.py — Key-value storage layer for Simple Tracker.

Namespace conventions:
  simple-tracker-wizard           → client wizard session          TTL 24h (rolling)
  simple-tracker-device-id        → stable device identifier        no TTL
  auth-storage                    → persisted auth session          TTL = session lifetime
  wizard:{session_id}             → server-side step checkpoints    TTL 24h (86400s)

Design:
  - KeyValueStorage is the port: get / set(ttl) / remove over JSON strings
  - RedisStorage wraps redis.asyncio (async client, part of redis-py 5.x)
  - MemoryStorage keeps entries for the lifetime of the process (temporary sessions, tests)
  - Read helpers never raise: storage outages and corrupt entries read as "absent",
    corrupt entries are dropped
  - Logs only keys and session ids — no field values in logs
"""
import json
import logging
import time
from typing import Any, Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from tracker.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# TTL constants (seconds)
# ---------------------------------------------------------------------------
CHECKPOINT_TTL: int = 86400   # 24 hours

# ---------------------------------------------------------------------------
# Key constants
# ---------------------------------------------------------------------------
WIZARD_STORAGE_KEY = "simple-tracker-wizard"
DEVICE_ID_KEY = "simple-tracker-device-id"
AUTH_STORAGE_KEY = "auth-storage"
CHECKPOINT_PREFIX = "wizard"


def make_checkpoint_key(session_id: str) -> str:
    """Build key for server-side wizard checkpoints: wizard:{session_id}"""
    return f"{CHECKPOINT_PREFIX}:{session_id}"


# ---------------------------------------------------------------------------
# Storage port
# ---------------------------------------------------------------------------

class KeyValueStorage(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def remove(self, key: str) -> None: ...


class RedisStorage:
    """KeyValueStorage backed by an async Redis client (decode_responses=True)."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self.client.setex(key, ttl, value)
        else:
            await self.client.set(key, value)

    async def remove(self, key: str) -> None:
        await self.client.delete(key)


class MemoryStorage:
    """
    In-process KeyValueStorage with per-key expiry.

    `clock` returns epoch seconds; tests pass a controllable clock to move
    past a TTL without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._entries[key] = (value, expires_at)

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


# ---------------------------------------------------------------------------
# Pool factory — called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup — wrapped in RedisStorage on app.state.storage.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

async def read_json(storage: KeyValueStorage, key: str) -> Optional[Any]:
    """
    Read and decode a JSON value.
    Returns None if the key is absent, the storage is unreachable, or the entry
    is corrupt (corrupt entries are removed).
    """
    try:
        raw = await storage.get(key)
    except RedisError as exc:
        logger.warning("Storage read failed key=%s: %s", key, exc)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Dropping corrupt storage entry key=%s", key)
        await discard(storage, key)
        return None


async def write_json(
    storage: KeyValueStorage, key: str, value: Any, ttl: Optional[int] = None
) -> bool:
    """
    Encode and store a JSON value. Overwrites existing value and resets TTL.
    Returns False (after logging) when the storage is unreachable.
    """
    try:
        await storage.set(key, json.dumps(value), ttl)
    except RedisError as exc:
        logger.warning("Storage write failed key=%s: %s", key, exc)
        return False
    return True


async def discard(storage: KeyValueStorage, key: str) -> None:
    """Remove a key; storage outages are logged, not raised."""
    try:
        await storage.remove(key)
    except RedisError as exc:
        logger.warning("Storage remove failed key=%s: %s", key, exc)


# ---------------------------------------------------------------------------
# Server-side wizard checkpoints
# ---------------------------------------------------------------------------

async def get_checkpoint(storage: KeyValueStorage, session_id: str) -> dict:
    """
    Retrieve the per-step checkpoint dict for a wizard session.
    Returns {} if the session expired or never existed.
    """
    data = await read_json(storage, make_checkpoint_key(session_id))
    return data if isinstance(data, dict) else {}


async def set_checkpoint(
    storage: KeyValueStorage, session_id: str, step: str, payload: dict
) -> dict:
    """
    Merge one step's payload into the session checkpoint with TTL 24h.
    Resets TTL on every write. Returns the merged checkpoint.
    """
    data = await get_checkpoint(storage, session_id)
    data[step] = payload
    await write_json(storage, make_checkpoint_key(session_id), data, CHECKPOINT_TTL)
    logger.info("Checkpoint updated session_id=%s step=%s ttl=%ds", session_id, step, CHECKPOINT_TTL)
    return data


async def clear_checkpoint(storage: KeyValueStorage, session_id: str) -> None:
    await discard(storage, make_checkpoint_key(session_id))
    logger.info("Checkpoint cleared session_id=%s", session_id)
