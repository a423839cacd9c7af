"""
Per-slot serialization for allocation and promotion.

Two layers guard a (restaurant, date, time) slot:
    - SlotLockRegistry: an asyncio.Lock per slot inside one process.
    - acquire_slot_xact_lock(): a PostgreSQL transaction-scoped advisory lock
      so workers in other processes queue behind the same slot. Released
      automatically on commit or rollback.

The partial unique index on bookings backs both up at the store level.
"""

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import date, time
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

SlotKey = tuple[int, date, time]


def slot_key(restaurant_id: int, on: date, at: time) -> SlotKey:
    return (restaurant_id, on, at.replace(microsecond=0))


def advisory_lock_key(key: SlotKey) -> int:
    """Deterministic signed bigint for pg_advisory_xact_lock (one slot = one writer)."""
    restaurant_id, on, at = key
    raw = f"tablewise:{restaurant_id}:{on.isoformat()}:{at.isoformat()}"
    digest = hashlib.sha256(raw.encode()).digest()[:8]
    return int.from_bytes(digest, "big", signed=True)


class SlotLockRegistry:
    """
    asyncio.Lock per slot, dropped again once nobody holds or waits on it.
    """

    def __init__(self):
        self._locks: dict[SlotKey, asyncio.Lock] = {}
        self._users: dict[SlotKey, int] = {}

    @asynccontextmanager
    async def hold(self, key: SlotKey) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


async def acquire_slot_xact_lock(session: AsyncSession, key: SlotKey) -> None:
    """Block until this transaction owns the slot across processes (PostgreSQL only)."""
    if session.bind.dialect.name != "postgresql":
        return
    await session.execute(
        text("SELECT pg_advisory_xact_lock(:k)"), {"k": advisory_lock_key(key)}
    )
    logger.debug(f"Advisory lock acquired for slot {key}")


@asynccontextmanager
async def slot_transaction(
    session_maker: async_sessionmaker[AsyncSession],
    locks: SlotLockRegistry,
    key: SlotKey,
) -> AsyncIterator[AsyncSession]:
    """
    Session whose transaction owns the slot end to end.

    The in-process lock is taken first and released only after the
    transaction has committed or rolled back.
    """
    async with locks.hold(key):
        async with session_maker() as session:
            async with session.begin():
                await acquire_slot_xact_lock(session, key)
                yield session
