from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

_LockKey = tuple[int, str, str]

_ENTITY_LOCKS: dict[_LockKey, asyncio.Lock] = {}
_WAITERS: dict[_LockKey, int] = {}


def _lock_for_entity(key: _LockKey) -> asyncio.Lock:
    lock = _ENTITY_LOCKS.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _ENTITY_LOCKS[key] = lock
    return lock


# In-process only; PostgreSQL also takes SELECT ... FOR UPDATE inside the transaction.
@asynccontextmanager
async def entity_lock(*, user_id: int, entity_type: str, entity_id: str) -> AsyncIterator[None]:
    key: _LockKey = (int(user_id), entity_type, entity_id)
    lock = _lock_for_entity(key)
    _WAITERS[key] = _WAITERS.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        remaining = _WAITERS[key] - 1
        if remaining <= 0:
            # Last holder drops the lock so the registry does not grow per entity ever touched.
            _WAITERS.pop(key, None)
            _ENTITY_LOCKS.pop(key, None)
        else:
            _WAITERS[key] = remaining


def active_lock_count() -> int:
    return len(_ENTITY_LOCKS)
