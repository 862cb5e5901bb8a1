"""
MFA Status Repository

Stores the per-user MFAStatus record. Every transition is a compare-and-set
replace of the whole document, so concurrent enroll/enable/disable calls for
the same user cannot lose each other's method changes.
"""

from collections.abc import Callable
from datetime import datetime

from localite_mfa.core.errors import StoreUnavailableError
from localite_mfa.core.logging import get_logger
from localite_mfa.mfa.domain.entities import (
    MFAStatus,
    RecordDecodeError,
    decode_document,
    encode_document,
)
from localite_mfa.mfa.domain.enums import MFAMethod
from localite_mfa.mfa.domain.interfaces import IClock, IKeyValueStore
from localite_mfa.mfa.infrastructure.repositories.atomic import Write, atomic_update
from localite_mfa.mfa.infrastructure.services.key_builder import MFAKeyBuilder

logger = get_logger(__name__)


class MFAStatusRepository:
    """Key-value backed MFAStatus persistence."""

    def __init__(
        self,
        store: IKeyValueStore,
        keys: MFAKeyBuilder,
        clock: IClock,
        max_retries: int = 5,
    ):
        self._store = store
        self._keys = keys
        self._clock = clock
        self._max_retries = max_retries

    def _decode(self, uid: str, raw: str | None) -> MFAStatus:
        if raw is None:
            return MFAStatus.default(uid)
        try:
            return MFAStatus.from_dict(decode_document(raw))
        except RecordDecodeError as e:
            logger.warning("Discarding unreadable MFA status", uid=uid, error=str(e))
            return MFAStatus.default(uid)

    async def get(self, uid: str) -> MFAStatus:
        """Load the status record. Absent means disabled.

        Raises:
            StoreUnavailableError: The store could not be read
        """
        return self._decode(uid, await self._store.get(self._keys.status(uid)))

    async def get_or_default(self, uid: str) -> MFAStatus:
        """Load the status record, degrading to disabled on store errors."""
        try:
            return await self.get(uid)
        except StoreUnavailableError:
            logger.warning("MFA status unreadable, reporting disabled", uid=uid)
            return MFAStatus.default(uid)

    async def update(
        self, uid: str, mutate: Callable[[MFAStatus, datetime], None]
    ) -> MFAStatus:
        """Apply ``mutate`` to the stored record with compare-and-set."""
        result: list[MFAStatus] = []

        def updater(raw: str | None) -> Write:
            status = self._decode(uid, raw)
            mutate(status, self._clock.now())
            result[:] = [status]
            return Write(encode_document(status.to_dict()))

        await atomic_update(
            self._store,
            self._keys.status(uid),
            updater,
            record=f"mfa_status:{uid}",
            max_retries=self._max_retries,
        )
        status = result[0]
        logger.info(
            "MFA status updated",
            uid=uid,
            status=status.status.value,
            enabled_methods=[m.value for m in status.enabled_methods],
            pending_methods=[m.value for m in status.pending_methods],
        )
        return status

    async def mark_pending(self, uid: str, method: MFAMethod) -> MFAStatus:
        return await self.update(uid, lambda s, now: s.mark_pending(method, now))

    async def mark_enabled(self, uid: str, method: MFAMethod) -> MFAStatus:
        return await self.update(uid, lambda s, now: s.mark_enabled(method, now))

    async def remove_method(self, uid: str, method: MFAMethod) -> MFAStatus:
        return await self.update(uid, lambda s, now: s.remove(method, now))

    async def clear_pending(self, uid: str, method: MFAMethod) -> MFAStatus:
        return await self.update(uid, lambda s, now: s.clear_pending(method, now))
