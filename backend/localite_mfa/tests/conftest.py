"""
Global pytest configuration and fixtures for the MFA core tests.

Provides:
- A controllable clock
- An in-memory store that can simulate outages
- A recording SMS channel
- A fully wired MFAService built through the DI container
"""

import asyncio
import os

os.environ.setdefault("ENVIRONMENT", "test")

from datetime import UTC, datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from dependency_injector import providers  # noqa: E402

from localite_mfa.bootstrap.container import create_container  # noqa: E402
from localite_mfa.core.config import MFASettings  # noqa: E402
from localite_mfa.core.errors import StoreUnavailableError  # noqa: E402
from localite_mfa.mfa.infrastructure.adapters.memory_store_adapter import (  # noqa: E402
    InMemoryKeyValueStore,
)
from localite_mfa.mfa.infrastructure.adapters.sms_adapter import (  # noqa: E402
    MockSMSAdapter,
)

TEST_PHONE = "+886912345678"
TEST_EMAIL = "traveller@example.com"


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


class OutageStore(InMemoryKeyValueStore):
    """In-memory store whose operations can be made to fail by name."""

    def __init__(self, clock):
        super().__init__(clock)
        self.failing: set[str] = set()
        # Yield to the event loop after every read so concurrent tasks interleave
        self.interleave = False

    def _check(self, operation: str) -> None:
        if operation in self.failing or "*" in self.failing:
            raise StoreUnavailableError(operation, "simulated outage")

    async def get(self, key):
        self._check("get")
        value = await super().get(key)
        if self.interleave:
            await asyncio.sleep(0)
        return value

    async def set(self, key, value):
        self._check("set")
        return await super().set(key, value)

    async def set_with_ttl(self, key, value, ttl):
        self._check("set_with_ttl")
        return await super().set_with_ttl(key, value, ttl)

    async def delete(self, key):
        self._check("delete")
        return await super().delete(key)

    async def increment_with_ttl(self, key, ttl):
        self._check("increment_with_ttl")
        return await super().increment_with_ttl(key, ttl)

    async def compare_and_set(self, key, expected, value, ttl=None):
        self._check("compare_and_set")
        return await super().compare_and_set(key, expected, value, ttl)

    async def ping(self):
        self._check("ping")
        return await super().ping()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 14, 9, 26, 53, tzinfo=UTC))


@pytest.fixture
def store(clock) -> OutageStore:
    return OutageStore(clock)


@pytest.fixture
def sms_channel() -> MockSMSAdapter:
    return MockSMSAdapter()


@pytest.fixture
def settings() -> MFASettings:
    return MFASettings(env_file="does-not-exist.env")


@pytest.fixture
def container(settings, store, sms_channel, clock):
    """DI container with the test doubles swapped in."""
    container = create_container(settings)
    container.store.override(providers.Object(store))
    container.sms_channel.override(providers.Object(sms_channel))
    container.clock.override(providers.Object(clock))
    yield container
    container.reset_override()


@pytest.fixture
def mfa_service(container):
    return container.mfa_service()


@pytest.fixture
def totp_provider(container):
    return container.totp_provider()


@pytest.fixture
def sms_provider(container):
    return container.sms_provider()


@pytest.fixture
def backup_provider(container):
    return container.backup_code_provider()


@pytest.fixture
def counter(container):
    return container.attempt_counter()


@pytest.fixture
def status_repository(container):
    return container.status_repository()


@pytest.fixture
def keys(container):
    return container.key_builder()


@pytest.fixture
def uid() -> str:
    return "user-123"
