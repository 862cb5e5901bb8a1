"""
Backup Code MFA Provider Implementation

Backup recovery codes for Multi-Factor Authentication. A user holds one
generation of codes at a time; regeneration replaces the whole set.
"""

import re
from datetime import datetime

from localite_mfa.core.config import BackupCodeConfig
from localite_mfa.core.errors import StoreUnavailableError
from localite_mfa.core.logging import get_logger
from localite_mfa.mfa.domain.entities import (
    BackupCode,
    BackupCodeSet,
    RecordDecodeError,
    decode_document,
    encode_document,
)
from localite_mfa.mfa.domain.enums import MFAMethod, VerificationResult
from localite_mfa.mfa.domain.interfaces import IClock, IKeyValueStore
from localite_mfa.mfa.domain.value_objects import MFAResult
from localite_mfa.mfa.infrastructure.repositories.atomic import Write, atomic_update
from localite_mfa.mfa.infrastructure.repositories.mfa_status_repository import (
    MFAStatusRepository,
)
from localite_mfa.mfa.infrastructure.services.code_generator import CodeGenerator
from localite_mfa.mfa.infrastructure.services.key_builder import MFAKeyBuilder
from localite_mfa.mfa.infrastructure.services.result_guard import guard_store_errors

logger = get_logger(__name__)

SEPARATORS = re.compile(r"[\s\-]+")

SAFEKEEPING_WARNING = (
    "Store these codes somewhere safe. Each code works once and they will not be shown again."
)
LOW_CODES_THRESHOLD = 3


def normalize_code(code: str) -> str:
    """Strip whitespace and dashes, uppercase."""
    return SEPARATORS.sub("", code or "").upper()


class BackupCodeMFAProvider:
    """Backup code subsystem backed by the key-value store."""

    def __init__(
        self,
        store: IKeyValueStore,
        keys: MFAKeyBuilder,
        status_repository: MFAStatusRepository,
        clock: IClock,
        code_generator: CodeGenerator,
        config: BackupCodeConfig,
        max_retries: int = 5,
    ):
        """Initialize backup code provider.

        Args:
            store: Key-value store holding the code sets
            keys: Store key layout
            status_repository: MFA status records
            clock: Time source for usage timestamps
            code_generator: Secure code source
            config: Code length and count
            max_retries: Compare-and-set retries for record updates
        """
        self._store = store
        self._keys = keys
        self._status = status_repository
        self._clock = clock
        self._codes = code_generator
        self._config = config
        self._max_retries = max_retries

    @property
    def method(self) -> MFAMethod:
        """Get MFA method type."""
        return MFAMethod.BACKUP_CODE

    def _decode(self, uid: str, raw: str | None) -> BackupCodeSet | None:
        if raw is None:
            return None
        try:
            return BackupCodeSet.from_dict(decode_document(raw))
        except RecordDecodeError as e:
            logger.warning("Ignoring unreadable backup code set", uid=uid, error=str(e))
            return None

    async def _load(self, uid: str) -> BackupCodeSet | None:
        return self._decode(uid, await self._store.get(self._keys.backup_codes(uid)))

    def _new_set(self, enabled: bool, now: datetime) -> BackupCodeSet:
        plain = self._codes.generate_unique_codes(
            self._config.code_count, self._config.code_length
        )
        return BackupCodeSet(
            codes=[BackupCode(code=code) for code in plain],
            enabled=enabled,
            created_at=now,
            enabled_at=now if enabled else None,
        )

    @guard_store_errors("backup_codes.setup")
    async def setup(self, uid: str) -> MFAResult:
        existing = await self._load(uid)
        if existing and existing.enabled:
            return MFAResult.fail(
                VerificationResult.ALREADY_ENABLED,
                "Backup codes are already set up and enabled",
            )

        code_set = self._new_set(enabled=False, now=self._clock.now())
        await self._store.set(
            self._keys.backup_codes(uid), encode_document(code_set.to_dict())
        )
        await self._status.mark_pending(uid, MFAMethod.BACKUP_CODE)

        logger.info("Backup codes generated", uid=uid, count=len(code_set.codes))
        return MFAResult.ok(
            "Backup codes generated",
            codes=[entry.code for entry in code_set.codes],
            warning=SAFEKEEPING_WARNING,
        )

    @guard_store_errors("backup_codes.verify")
    async def verify(self, uid: str, code: str) -> MFAResult:
        normalized = normalize_code(code)
        outcome: dict[str, object] = {}
        now = self._clock.now()

        def consume(raw: str | None) -> Write | None:
            code_set = self._decode(uid, raw)
            if code_set is None:
                outcome["state"] = "missing"
                return None
            if not normalized or not code_set.consume(normalized, now):
                outcome["state"] = "invalid"
                return None
            outcome["state"] = "used"
            outcome["remaining"] = code_set.remaining
            return Write(encode_document(code_set.to_dict()))

        await atomic_update(
            self._store,
            self._keys.backup_codes(uid),
            consume,
            record=f"backup_codes:{uid}",
            max_retries=self._max_retries,
        )

        if outcome["state"] == "missing":
            return MFAResult.fail(
                VerificationResult.NOT_SET_UP, "Backup codes are not set up"
            )
        if outcome["state"] == "invalid":
            logger.info("Backup code rejected", uid=uid)
            return MFAResult.fail(
                VerificationResult.INVALID_CODE, "Invalid or already used backup code"
            )

        remaining = outcome["remaining"]
        logger.info("Backup code used", uid=uid, remaining=remaining)
        data = {"remaining_codes": remaining}
        if remaining < LOW_CODES_THRESHOLD:
            data["warning"] = (
                f"Only {remaining} backup codes remaining. Generate new codes soon."
            )
        return MFAResult.ok("Backup code verified", **data)

    @guard_store_errors("backup_codes.enable")
    async def enable(self, uid: str) -> MFAResult:
        outcome: dict[str, str] = {}
        now = self._clock.now()

        def flip(raw: str | None) -> Write | None:
            code_set = self._decode(uid, raw)
            if code_set is None:
                outcome["state"] = "missing"
                return None
            if code_set.enabled:
                outcome["state"] = "enabled"
                return None
            code_set.enabled = True
            code_set.enabled_at = now
            outcome["state"] = "flipped"
            return Write(encode_document(code_set.to_dict()))

        await atomic_update(
            self._store,
            self._keys.backup_codes(uid),
            flip,
            record=f"backup_codes:{uid}",
            max_retries=self._max_retries,
        )

        if outcome["state"] == "missing":
            return MFAResult.fail(
                VerificationResult.NOT_SET_UP,
                "Backup codes do not exist, set them up first",
            )
        if outcome["state"] == "enabled":
            return MFAResult.fail(
                VerificationResult.ALREADY_ENABLED, "Backup codes are already enabled"
            )

        await self._status.mark_enabled(uid, MFAMethod.BACKUP_CODE)
        logger.info("Backup codes enabled", uid=uid)
        return MFAResult.ok("Backup codes enabled", enabled_at=now.isoformat())

    @guard_store_errors("backup_codes.regenerate")
    async def regenerate(self, uid: str) -> MFAResult:
        """Replace the whole set. An enabled set stays enabled."""
        now = self._clock.now()
        replacement: list[BackupCodeSet] = []

        def replace(raw: str | None) -> Write:
            previous = self._decode(uid, raw)
            code_set = self._new_set(enabled=bool(previous and previous.enabled), now=now)
            replacement[:] = [code_set]
            return Write(encode_document(code_set.to_dict()))

        await atomic_update(
            self._store,
            self._keys.backup_codes(uid),
            replace,
            record=f"backup_codes:{uid}",
            max_retries=self._max_retries,
        )
        code_set = replacement[0]

        if code_set.enabled:
            await self._status.mark_enabled(uid, MFAMethod.BACKUP_CODE)
        else:
            await self._status.mark_pending(uid, MFAMethod.BACKUP_CODE)

        logger.info("Backup codes regenerated", uid=uid, enabled=code_set.enabled)
        return MFAResult.ok(
            "Backup codes regenerated",
            codes=[entry.code for entry in code_set.codes],
            enabled=code_set.enabled,
            warning=SAFEKEEPING_WARNING,
        )

    @guard_store_errors("backup_codes.disable")
    async def disable(self, uid: str) -> MFAResult:
        await self._store.delete(self._keys.backup_codes(uid))
        await self._status.remove_method(uid, MFAMethod.BACKUP_CODE)
        logger.info("Backup codes disabled", uid=uid)
        return MFAResult.ok("Backup codes disabled")

    @guard_store_errors("backup_codes.get")
    async def get_codes(self, uid: str, include_used: bool = False) -> MFAResult:
        code_set = await self._load(uid)
        if code_set is None:
            return MFAResult.fail(
                VerificationResult.NOT_SET_UP, "Backup codes do not exist"
            )

        entries = [
            entry.to_dict()
            for entry in code_set.codes
            if include_used or not entry.used
        ]
        return MFAResult.ok(
            "Backup codes retrieved",
            codes=entries,
            total_codes=len(code_set.codes),
            remaining_codes=code_set.remaining,
            used_codes=len(code_set.codes) - code_set.remaining,
            enabled=code_set.enabled,
            created_at=code_set.created_at.isoformat(),
            last_used_at=code_set.last_used_at.isoformat() if code_set.last_used_at else None,
        )

    async def remaining(self, uid: str) -> int:
        """Unused codes left, zero when unreadable."""
        try:
            code_set = await self._load(uid)
        except StoreUnavailableError:
            return 0
        return code_set.remaining if code_set else 0

    async def is_enabled(self, uid: str) -> bool:
        try:
            code_set = await self._load(uid)
        except StoreUnavailableError:
            return False
        return bool(code_set and code_set.enabled)
