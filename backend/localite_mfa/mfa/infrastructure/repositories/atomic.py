"""Optimistic read-modify-write over the key-value store."""

from collections.abc import Callable
from dataclasses import dataclass

from localite_mfa.core.errors import ConcurrentUpdateError
from localite_mfa.core.logging import get_logger
from localite_mfa.mfa.domain.interfaces import IKeyValueStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class Write:
    """Replacement for a key. ``value=None`` deletes it."""

    value: str | None
    ttl: int | None = None


async def atomic_update(
    store: IKeyValueStore,
    key: str,
    updater: Callable[[str | None], Write | None],
    record: str,
    max_retries: int = 5,
) -> bool:
    """
    Apply ``updater`` to the current value of ``key`` with compare-and-set.

    ``updater`` receives the raw current value (``None`` when absent) and
    returns the Write to apply, or ``None`` to leave the key untouched. It is
    re-run on every retry, so it must not have effects beyond its return
    value other than recording what it decided.

    Returns:
        True if a write was applied, False if the updater declined

    Raises:
        ConcurrentUpdateError: The key kept changing underneath us
        StoreUnavailableError: The store failed
    """
    for attempt in range(1, max_retries + 1):
        current = await store.get(key)
        write = updater(current)
        if write is None:
            return False
        if await store.compare_and_set(key, current, write.value, write.ttl):
            return True
        logger.debug("Compare-and-set lost a race", record=record, attempt=attempt)

    raise ConcurrentUpdateError(record, max_retries)
