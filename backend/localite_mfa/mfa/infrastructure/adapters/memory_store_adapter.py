"""
In-Memory Key-Value Store Adapter

Single-process implementation of IKeyValueStore for development and tests.
Expiry is driven by the injected clock, so tests can move time forward
without sleeping. No operation awaits between its read and write, which
makes each call atomic on the event loop.
"""

import math
from fnmatch import fnmatchcase

from localite_mfa.core.errors import StoreUnavailableError
from localite_mfa.mfa.domain.interfaces import IClock
from localite_mfa.mfa.infrastructure.adapters.clock_adapter import SystemClock


class InMemoryKeyValueStore:
    """Dictionary-backed store with clock-driven TTLs."""

    def __init__(self, clock: IClock | None = None):
        self._clock = clock or SystemClock()
        self._data: dict[str, tuple[str, float | None]] = {}

    def _now(self) -> float:
        return self._clock.now().timestamp()

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._now():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str) -> None:
        self._data[key] = (value, None)

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self._now() + ttl)

    async def delete(self, key: str) -> bool:
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return existed

    async def increment(self, key: str) -> int:
        entry = self._live(key)
        value, expires_at = entry if entry else ("0", None)
        try:
            count = int(value) + 1
        except ValueError as e:
            raise StoreUnavailableError(
                "increment", "value is not an integer", cause=e
            ) from e
        self._data[key] = (str(count), expires_at)
        return count

    async def increment_with_ttl(self, key: str, ttl: int) -> int:
        count = await self.increment(key)
        self._data[key] = (str(count), self._now() + ttl)
        return count

    async def expire(self, key: str, ttl: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._now() + ttl)
        return True

    async def keys(self, pattern: str) -> list[str]:
        return [key for key in list(self._data) if self._live(key) and fnmatchcase(key, pattern)]

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return math.ceil(entry[1] - self._now())

    async def compare_and_set(
        self, key: str, expected: str | None, value: str | None, ttl: int | None = None
    ) -> bool:
        entry = self._live(key)
        current = entry[0] if entry else None
        if current != expected:
            return False
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = (value, self._now() + ttl if ttl else None)
        return True

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        self._data.clear()
