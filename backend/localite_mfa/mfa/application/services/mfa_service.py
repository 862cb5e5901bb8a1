"""
MFA Service

Coordinates enrollment state, attempt limiting and verification across the
TOTP, SMS and backup code subsystems. This is the entry point used by the
authentication layer.
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from localite_mfa.core.errors import StoreUnavailableError, ValidationError
from localite_mfa.core.logging import get_logger, log_operation
from localite_mfa.mfa.domain.entities import (
    BackupCodeSet,
    MFAStatus,
    RecordDecodeError,
    SMSChallenge,
    TOTPSecret,
    decode_document,
)
from localite_mfa.mfa.domain.enums import MFAMethod, MFAStatusKind, VerificationResult
from localite_mfa.mfa.domain.interfaces import IClock, IKeyValueStore, IMFAProvider
from localite_mfa.mfa.domain.value_objects import MFAResult
from localite_mfa.mfa.infrastructure.repositories.mfa_status_repository import (
    MFAStatusRepository,
)
from localite_mfa.mfa.infrastructure.services import key_builder
from localite_mfa.mfa.infrastructure.services.attempt_counter import AttemptCounter
from localite_mfa.mfa.infrastructure.services.backup_code_mfa_provider import (
    BackupCodeMFAProvider,
)
from localite_mfa.mfa.infrastructure.services.key_builder import MFAKeyBuilder
from localite_mfa.mfa.infrastructure.services.result_guard import (
    STORE_UNAVAILABLE_MESSAGE,
)
from localite_mfa.mfa.infrastructure.services.sms_mfa_provider import SMSMFAProvider
from localite_mfa.mfa.infrastructure.services.totp_mfa_provider import TOTPMFAProvider

logger = get_logger(__name__)

ABANDONED_SETUP_AGE = timedelta(hours=24)

# Record kinds stored as JSON documents; counters and stamps are left alone
DOCUMENT_KINDS = frozenset(
    {
        key_builder.SMS_CHALLENGE,
        key_builder.TOTP_SECRET,
        key_builder.BACKUP_CODES,
        key_builder.STATUS,
    }
)


class MFAService:
    """Unified MFA entry point."""

    def __init__(
        self,
        store: IKeyValueStore,
        keys: MFAKeyBuilder,
        clock: IClock,
        status_repository: MFAStatusRepository,
        counter: AttemptCounter,
        totp_provider: TOTPMFAProvider,
        sms_provider: SMSMFAProvider,
        backup_code_provider: BackupCodeMFAProvider,
    ):
        """Initialize MFA service.

        Args:
            store: Key-value store, used directly for health checks and cleanup
            keys: Store key layout
            clock: Time source
            status_repository: MFA status records
            counter: Attempt limiting counters
            totp_provider: TOTP subsystem
            sms_provider: SMS subsystem
            backup_code_provider: Backup code subsystem
        """
        self._store = store
        self._keys = keys
        self._clock = clock
        self._status = status_repository
        self._counter = counter
        self.totp = totp_provider
        self.sms = sms_provider
        self.backup_codes = backup_code_provider

        self.providers: dict[MFAMethod, IMFAProvider] = {
            MFAMethod.TOTP: totp_provider,
            MFAMethod.SMS: sms_provider,
            MFAMethod.BACKUP_CODE: backup_code_provider,
        }

    @staticmethod
    def _require_uid(uid: str) -> None:
        if not uid:
            raise ValidationError("User id is required", field="uid")

    # =================================================================
    # STATUS
    # =================================================================

    async def get_status(self, uid: str) -> dict[str, Any]:
        """Status record (disabled when absent) with live backup code count."""
        self._require_uid(uid)
        status = await self._status.get_or_default(uid)
        return {
            **status.to_dict(),
            "backupCodesRemaining": await self.backup_codes.remaining(uid),
        }

    async def is_mfa_enabled(self, uid: str) -> bool:
        self._require_uid(uid)
        status = await self._status.get_or_default(uid)
        return status.status == MFAStatusKind.ENABLED

    async def is_method_enabled(self, uid: str, method: str | MFAMethod) -> bool:
        self._require_uid(uid)
        resolved = MFAMethod.parse(method)
        if resolved is None:
            return False
        status = await self._status.get_or_default(uid)
        return status.is_enabled(resolved)

    # =================================================================
    # VERIFICATION
    # =================================================================

    async def _limited(
        self,
        uid: str,
        method: MFAMethod,
        operation: str,
        call: Callable[[], Awaitable[MFAResult]],
    ) -> MFAResult:
        """Run ``call`` under the attempt limiter for ``method``."""
        if await self._counter.is_exceeded(uid, method):
            return MFAResult.fail(
                VerificationResult.TOO_MANY_ATTEMPTS,
                "Too many attempts, please try again later",
            )

        try:
            await self._counter.increment_all(uid, method)
        except StoreUnavailableError:
            logger.error(
                "Attempt could not be counted, refusing verification",
                uid=uid,
                method=method.value,
                operation=operation,
            )
            return MFAResult.fail(
                VerificationResult.STORE_UNAVAILABLE, STORE_UNAVAILABLE_MESSAGE
            )

        try:
            result = await call()
        except Exception as e:  # noqa: BLE001 - a failing subsystem must not leak
            logger.exception(
                "MFA verification raised",
                uid=uid,
                method=method.value,
                operation=operation,
                error=str(e),
            )
            return MFAResult.fail(
                VerificationResult.INVALID_CODE, "Verification failed, please try again"
            )

        if result.success:
            try:
                await self._counter.reset(uid, method)
            except StoreUnavailableError:
                # The code was already consumed, so the success stands
                logger.error(
                    "Attempt counter reset failed", uid=uid, method=method.value
                )
        return result

    async def verify(self, uid: str, code: str, method: str | MFAMethod) -> MFAResult:
        """Verify a code for any method, guarded by attempt limiting."""
        self._require_uid(uid)
        resolved = MFAMethod.parse(method)
        provider = self.providers.get(resolved) if resolved else None
        if provider is None:
            logger.warning("Unsupported MFA method requested", uid=uid, method=str(method))
            return MFAResult.fail(
                VerificationResult.INVALID_CODE, f"Unsupported MFA method: {method}"
            )

        with log_operation("mfa.verify", uid=uid, method=resolved.value):
            return await self._limited(
                uid, resolved, "verify", lambda: provider.verify(uid, code or "")
            )

    async def enable_totp(self, uid: str, code: str) -> MFAResult:
        self._require_uid(uid)
        return await self._limited(
            uid, MFAMethod.TOTP, "enable", lambda: self.totp.enable(uid, code or "")
        )

    async def enable_sms(self, uid: str, code: str) -> MFAResult:
        self._require_uid(uid)
        return await self._limited(
            uid, MFAMethod.SMS, "enable", lambda: self.sms.enable(uid, code or "")
        )

    # =================================================================
    # ENROLLMENT PASS-THROUGHS
    # =================================================================

    async def setup_totp(self, uid: str, email: str) -> MFAResult:
        self._require_uid(uid)
        return await self.totp.setup(uid, email)

    async def disable_totp(self, uid: str) -> MFAResult:
        self._require_uid(uid)
        return await self.totp.disable(uid)

    async def send_sms(self, uid: str, phone: str, is_resend: bool = False) -> MFAResult:
        self._require_uid(uid)
        return await self.sms.send(uid, phone, is_resend=is_resend)

    async def setup_sms(self, uid: str, phone: str) -> MFAResult:
        self._require_uid(uid)
        return await self.sms.setup(uid, phone)

    async def disable_sms(self, uid: str) -> MFAResult:
        self._require_uid(uid)
        return await self.sms.disable(uid)

    async def setup_backup_codes(self, uid: str) -> MFAResult:
        self._require_uid(uid)
        return await self.backup_codes.setup(uid)

    async def enable_backup_codes(self, uid: str) -> MFAResult:
        self._require_uid(uid)
        return await self.backup_codes.enable(uid)

    async def regenerate_backup_codes(self, uid: str) -> MFAResult:
        self._require_uid(uid)
        return await self.backup_codes.regenerate(uid)

    async def disable_backup_codes(self, uid: str) -> MFAResult:
        self._require_uid(uid)
        return await self.backup_codes.disable(uid)

    async def get_backup_codes(self, uid: str, include_used: bool = False) -> MFAResult:
        self._require_uid(uid)
        return await self.backup_codes.get_codes(uid, include_used=include_used)

    # =================================================================
    # MAINTENANCE
    # =================================================================

    async def health_check(self) -> bool:
        """Check store connectivity."""
        try:
            return await self._store.ping()
        except StoreUnavailableError:
            return False

    async def cleanup_expired_data(self, uid: str | None = None) -> int:
        """
        Remove stale records that carry no TTL.

        Removes unreadable records, SMS challenges past their expiry and
        abandoned (never enabled) TOTP secrets and backup code sets older
        than a day, clearing their pending flag.

        Args:
            uid: Restrict the scan to one user

        Returns:
            Number of keys removed

        Raises:
            StoreUnavailableError: The store failed during the scan
        """
        patterns = (
            self._keys.user_patterns(uid) if uid else [self._keys.all_keys_pattern()]
        )
        candidates: set[str] = set()
        for pattern in patterns:
            candidates.update(await self._store.keys(pattern))

        removed = 0
        for key in sorted(candidates):
            if uid and self._keys.owner_of(key) != uid:
                continue
            if await self._store.ttl(key) != -1:
                continue
            raw = await self._store.get(key)
            if raw is None:
                continue
            if await self._cleanup_record(key, raw):
                removed += 1

        logger.info("Expired MFA data cleaned up", uid=uid, removed=removed)
        return removed

    async def _cleanup_record(self, key: str, raw: str) -> bool:
        kind = self._keys.kind_of(key)
        if kind not in DOCUMENT_KINDS:
            return False
        owner = self._keys.owner_of(key)
        now = self._clock.now()
        abandoned_method: MFAMethod | None = None

        try:
            data = decode_document(raw)
            if kind == key_builder.SMS_CHALLENGE:
                if not SMSChallenge.from_dict(data).is_expired(int(now.timestamp() * 1000)):
                    return False
            elif kind == key_builder.TOTP_SECRET:
                secret = TOTPSecret.from_dict(data)
                if secret.enabled or now - secret.created_at < ABANDONED_SETUP_AGE:
                    return False
                abandoned_method = MFAMethod.TOTP
            elif kind == key_builder.BACKUP_CODES:
                code_set = BackupCodeSet.from_dict(data)
                if code_set.enabled or now - code_set.created_at < ABANDONED_SETUP_AGE:
                    return False
                abandoned_method = MFAMethod.BACKUP_CODE
            else:
                MFAStatus.from_dict(data)
                return False
        except RecordDecodeError:
            logger.warning("Removing unreadable MFA record", key=key)

        if not await self._store.compare_and_set(key, raw, None):
            return False
        if abandoned_method is not None:
            await self._status.clear_pending(owner, abandoned_method)
        return True
