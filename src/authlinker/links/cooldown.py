"""
Per (subject, action) issuance cooldown.

The guard is the fast path in front of the record store. It is eventually
consistent with issuance history: on a cache miss the issuer consults
``RecordStore.last_issued_at`` and primes the guard, so losing entries only
ever makes the next check stricter.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from redis.asyncio import Redis


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cooldown_key(subject_id: str, action: str) -> str:
    return f"{subject_id}:{action}"


class CooldownStore(Protocol):
    async def get(self, key: str) -> datetime | None: ...

    async def set(self, key: str, at: datetime, ttl: timedelta) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def sweep(self, cutoff: datetime) -> int: ...

    async def clear_prefix(self, prefix: str) -> int: ...

    async def clear(self) -> None: ...

    async def size(self) -> int: ...


class MemoryCooldownStore:
    """Process-local dict. Each method is a single dict operation, so no lock is needed."""

    def __init__(self) -> None:
        self._entries: dict[str, datetime] = {}

    async def get(self, key: str) -> datetime | None:
        return self._entries.get(key)

    async def set(self, key: str, at: datetime, ttl: timedelta) -> None:  # noqa: ARG002
        self._entries[key] = at

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def sweep(self, cutoff: datetime) -> int:
        stale = [key for key, at in list(self._entries.items()) if at <= cutoff]
        for key in stale:
            self._entries.pop(key, None)
        return len(stale)

    async def clear_prefix(self, prefix: str) -> int:
        keys = [key for key in list(self._entries) if key.startswith(prefix)]
        for key in keys:
            self._entries.pop(key, None)
        return len(keys)

    async def clear(self) -> None:
        self._entries.clear()

    async def size(self) -> int:
        return len(self._entries)


class RedisCooldownStore:
    """Shared across replicas. Entries carry a TTL equal to the remaining window."""

    def __init__(self, redis: Redis, prefix: str = "cooldown:") -> None:
        self._redis = redis
        self._prefix = prefix

    async def get(self, key: str) -> datetime | None:
        value = await self._redis.get(self._prefix + key)
        if value is None:
            return None
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)

    async def set(self, key: str, at: datetime, ttl: timedelta) -> None:
        ttl_ms = int(ttl.total_seconds() * 1000)
        if ttl_ms <= 0:
            return
        await self._redis.set(self._prefix + key, str(int(at.timestamp() * 1000)), px=ttl_ms)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._prefix + key)

    async def sweep(self, cutoff: datetime) -> int:  # noqa: ARG002
        # Redis expires entries on its own.
        return 0

    async def clear_prefix(self, prefix: str) -> int:
        keys = [key async for key in self._redis.scan_iter(match=f"{self._prefix}{prefix}*")]
        if keys:
            await self._redis.delete(*keys)
        return len(keys)

    async def clear(self) -> None:
        await self.clear_prefix("")

    async def size(self) -> int:
        count = 0
        async for _ in self._redis.scan_iter(match=f"{self._prefix}*"):
            count += 1
        return count


class CooldownGuard:
    """Answers "may this subject be issued another link for this action yet"."""

    def __init__(
        self,
        window_seconds: int,
        store: CooldownStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.window = timedelta(seconds=window_seconds)
        self._store: CooldownStore = store if store is not None else MemoryCooldownStore()
        self._clock = clock

    async def last_issued_at(self, subject_id: str, action: str) -> datetime | None:
        """Cached issue time, or None when absent or already outside the window."""
        key = cooldown_key(subject_id, action)
        at = await self._store.get(key)
        if at is None:
            return None
        if self._clock() - at >= self.window:
            await self._store.delete(key)
            return None
        return at

    async def is_in_cooldown(self, subject_id: str, action: str) -> bool:
        return await self.last_issued_at(subject_id, action) is not None

    async def remaining(self, subject_id: str, action: str) -> int:
        """Seconds until the window ends, rounded up. 0 when not cooling down."""
        at = await self.last_issued_at(subject_id, action)
        if at is None:
            return 0
        return self.remaining_from(at)

    def remaining_from(self, at: datetime) -> int:
        left = (at + self.window - self._clock()).total_seconds()
        return max(0, math.ceil(left))

    async def record(self, subject_id: str, action: str) -> None:
        """Start a new window now. Call only after the record was written."""
        await self.prime(subject_id, action, self._clock())

    async def prime(self, subject_id: str, action: str, at: datetime) -> None:
        """Seed the cache from an issue time found in the record store."""
        ttl = at + self.window - self._clock()
        await self._store.set(cooldown_key(subject_id, action), at, ttl)

    async def sweep(self) -> int:
        """Drop entries whose window has elapsed."""
        return await self._store.sweep(self._clock() - self.window)

    async def clear_subject(self, subject_id: str) -> int:
        return await self._store.clear_prefix(f"{subject_id}:")

    async def clear(self) -> None:
        await self._store.clear()

    async def size(self) -> int:
        return await self._store.size()
