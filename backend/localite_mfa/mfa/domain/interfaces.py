"""MFA Domain Interfaces

Contracts for the external collaborators of the MFA core: the key-value
record store, the SMS delivery channel and the clock. Implementations live in
the infrastructure layer.
"""

from datetime import datetime
from typing import Protocol

from localite_mfa.mfa.domain.enums import MFAMethod
from localite_mfa.mfa.domain.value_objects import MFAResult, SMSDeliveryReceipt


class IKeyValueStore(Protocol):
    """TTL-capable key-value store holding MFA records and counters.

    Every method raises ``StoreUnavailableError`` when the backend fails.
    """

    async def get(self, key: str) -> str | None:
        """Get the value stored under ``key``, ``None`` when absent."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` without expiry."""
        ...

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        """Store ``value`` expiring after ``ttl`` seconds."""
        ...

    async def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if it existed."""
        ...

    async def increment(self, key: str) -> int:
        """Increment an integer counter, creating it at 1 when absent."""
        ...

    async def increment_with_ttl(self, key: str, ttl: int) -> int:
        """Increment and set the TTL as one atomic operation."""
        ...

    async def expire(self, key: str, ttl: int) -> bool:
        """Set the TTL of an existing key."""
        ...

    async def keys(self, pattern: str) -> list[str]:
        """List keys matching a glob-style pattern."""
        ...

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -1 for no expiry, -2 for a missing key."""
        ...

    async def compare_and_set(
        self, key: str, expected: str | None, value: str | None, ttl: int | None = None
    ) -> bool:
        """Atomically replace ``key`` if it still holds ``expected``.

        ``expected=None`` means the key must be absent. ``value=None``
        deletes the key. ``ttl=None`` stores without expiry.
        Returns False when the current value differs.
        """
        ...

    async def ping(self) -> bool:
        """Check store connectivity."""
        ...


class ISMSDeliveryChannel(Protocol):
    """Outbound SMS channel. Treated as unreliable."""

    async def send(self, phone: str, code: str) -> SMSDeliveryReceipt:
        """Deliver ``code`` to ``phone``."""
        ...


class IClock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Current timezone-aware UTC datetime."""
        ...


class IMFAProvider(Protocol):
    """Verification half of an MFA method subsystem."""

    @property
    def method(self) -> MFAMethod:
        """Get MFA method type."""
        ...

    async def verify(self, uid: str, code: str) -> MFAResult:
        """Verify a code for the user."""
        ...

    async def is_enabled(self, uid: str) -> bool:
        """Check if the method is enabled for the user."""
        ...
