"""
Keyed locks serializing the seat check-then-act sequence per (event, date)

``LocalKeyedLock`` covers a single process. ``RedisKeyedLock`` covers several
processes sharing one Redis. Either way the ``uq_event_date_seat`` unique
constraint remains the final guard.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Dict, Optional
from uuid import UUID
import asyncio
import logging
import time
import uuid

import redis.asyncio as redis

from turnstile.core.exceptions import LockAcquisitionError

logger = logging.getLogger(__name__)


def seat_lock_key(event_id: UUID, booking_date: date) -> str:
    return f"seats:{event_id}:{booking_date.isoformat()}"


class KeyedLock(ABC):

    @abstractmethod
    def hold(self, key: str) -> "AsyncIterator[None]":
        """Async context manager holding the lock for ``key``."""
        ...


class _Entry:
    __slots__ = ("lock", "waiters")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.waiters = 0


class LocalKeyedLock(KeyedLock):
    """
    One asyncio.Lock per key, dropped once no task holds or awaits it
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.waiters += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise LockAcquisitionError(key)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.waiters -= 1
            if entry.waiters == 0:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisKeyedLock(KeyedLock):
    """
    Distributed lock: SET NX PX with an owner token, owner-checked release
    """

    RELEASE_SCRIPT = """
    local lock_key = KEYS[1]
    local identifier = ARGV[1]

    if redis.call("get", lock_key) == identifier then
        redis.call("del", lock_key)
        return 1
    else
        return 0
    end
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int = 30,
        timeout: float = 10.0,
        poll_interval: float = 0.05
    ):
        self.client = client
        self.ttl_ms = int(ttl_seconds * 1000)
        self.timeout = timeout
        self.poll_interval = poll_interval

    async def _acquire(self, lock_key: str, identifier: str) -> bool:
        deadline = time.monotonic() + self.timeout
        while True:
            if await self.client.set(lock_key, identifier, nx=True, px=self.ttl_ms):
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    @asynccontextmanager
    async def hold(self, key: str):
        lock_key = f"lock:{key}"
        identifier = str(uuid.uuid4())
        if not await self._acquire(lock_key, identifier):
            logger.warning(f"Timed out acquiring lock for {key}")
            raise LockAcquisitionError(key)
        logger.debug(f"Lock acquired for {key} with identifier {identifier}")
        try:
            yield
        finally:
            released = await self.client.eval(self.RELEASE_SCRIPT, 1, lock_key, identifier)
            if released != 1:
                # TTL elapsed while held; the unique constraint still protects the seats
                logger.warning(f"Lock for {key} expired before release")
