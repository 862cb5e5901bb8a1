"""
SMS MFA Provider Implementation

One-time codes delivered by SMS. A user has at most one outstanding
challenge; every send replaces it. Enrollment moves through
none -> pending -> enabled, login challenges use the same challenge record.
"""

import asyncio
import hmac
import math
import re

from localite_mfa.core.config import SMSConfig
from localite_mfa.core.errors import StoreUnavailableError
from localite_mfa.core.logging import get_logger
from localite_mfa.mfa.domain.entities import (
    RecordDecodeError,
    SMSChallenge,
    decode_document,
    encode_document,
)
from localite_mfa.mfa.domain.enums import MFAMethod, VerificationResult
from localite_mfa.mfa.domain.interfaces import IClock, IKeyValueStore, ISMSDeliveryChannel
from localite_mfa.mfa.domain.value_objects import MFAResult, SMSDeliveryReceipt
from localite_mfa.mfa.infrastructure.repositories.atomic import Write, atomic_update
from localite_mfa.mfa.infrastructure.repositories.mfa_status_repository import (
    MFAStatusRepository,
)
from localite_mfa.mfa.infrastructure.services.attempt_counter import AttemptCounter
from localite_mfa.mfa.infrastructure.services.code_generator import CodeGenerator
from localite_mfa.mfa.infrastructure.services.key_builder import MFAKeyBuilder
from localite_mfa.mfa.infrastructure.services.result_guard import guard_store_errors

logger = get_logger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[0-9]{10,15}$")


class SMSMFAProvider:
    """SMS subsystem backed by the key-value store and a delivery channel."""

    def __init__(
        self,
        store: IKeyValueStore,
        keys: MFAKeyBuilder,
        counter: AttemptCounter,
        status_repository: MFAStatusRepository,
        channel: ISMSDeliveryChannel,
        clock: IClock,
        code_generator: CodeGenerator,
        config: SMSConfig,
        max_retries: int = 5,
    ):
        self._store = store
        self._keys = keys
        self._counter = counter
        self._status = status_repository
        self._channel = channel
        self._clock = clock
        self._codes = code_generator
        self._config = config
        self._max_retries = max_retries

    @property
    def method(self) -> MFAMethod:
        """Get MFA method type."""
        return MFAMethod.SMS

    def _now_ms(self) -> int:
        return int(self._clock.now().timestamp() * 1000)

    @staticmethod
    def is_valid_phone(phone: str) -> bool:
        return bool(phone) and bool(PHONE_PATTERN.match(phone))

    async def resend_wait_seconds(self, uid: str) -> int:
        """Seconds until a resend is allowed. An unreadable stamp blocks the resend."""
        try:
            raw = await self._store.get(self._keys.resend(uid))
        except StoreUnavailableError:
            logger.warning("Resend stamp unreadable, blocking resend", uid=uid)
            return self._config.resend_interval_seconds
        if raw is None:
            return 0
        try:
            last_sent_ms = int(raw)
        except ValueError:
            return 0
        remaining_ms = self._config.resend_interval_seconds * 1000 - (
            self._now_ms() - last_sent_ms
        )
        return max(0, math.ceil(remaining_ms / 1000))

    async def _deliver(self, phone: str, code: str) -> SMSDeliveryReceipt:
        try:
            return await asyncio.wait_for(
                self._channel.send(phone, code),
                timeout=self._config.delivery_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return SMSDeliveryReceipt(success=False, error="SMS delivery timed out")
        except Exception as e:  # noqa: BLE001 - channel is an external collaborator
            logger.exception("SMS channel raised", error=str(e))
            return SMSDeliveryReceipt(success=False, error=str(e))

    async def _load(self, uid: str) -> tuple[str | None, SMSChallenge | None]:
        raw = await self._store.get(self._keys.sms_challenge(uid))
        if raw is None:
            return None, None
        try:
            return raw, SMSChallenge.from_dict(decode_document(raw))
        except RecordDecodeError as e:
            logger.warning("Ignoring unreadable SMS challenge", uid=uid, error=str(e))
            return raw, None

    @guard_store_errors("sms.send")
    async def send(self, uid: str, phone: str, is_resend: bool = False) -> MFAResult:
        """Issue a fresh challenge and deliver it."""
        if not self.is_valid_phone(phone):
            return MFAResult.fail(
                VerificationResult.INVALID_PHONE, "Invalid phone number format"
            )

        if await self._counter.daily_sends(uid) >= self._config.daily_send_limit:
            return MFAResult.fail(
                VerificationResult.RATE_LIMITED, "Daily SMS limit reached"
            )

        if is_resend:
            wait = await self.resend_wait_seconds(uid)
            if wait > 0:
                return MFAResult.fail(
                    VerificationResult.RATE_LIMITED,
                    f"Please wait {wait} seconds before requesting another code",
                    retry_after=wait,
                )

        code = self._codes.generate_numeric_code(self._config.code_length)
        created_at = self._now_ms()
        challenge = SMSChallenge(
            code=code,
            phone=phone,
            created_at_ms=created_at,
            expires_at_ms=created_at + self._config.code_expiry_seconds * 1000,
            is_resend=is_resend,
        )
        key = self._keys.sms_challenge(uid)
        encoded = encode_document(challenge.to_dict())
        await self._store.set_with_ttl(key, encoded, self._config.code_expiry_seconds)

        receipt = await self._deliver(phone, code)
        if not receipt.success:
            # Leave no valid-looking code behind, unless a newer send replaced it
            await self._store.compare_and_set(key, encoded, None)
            logger.warning(
                "SMS delivery failed", uid=uid, phone=phone, error=receipt.error
            )
            return MFAResult.fail(
                VerificationResult.DELIVERY_FAILED,
                "Failed to send verification code",
            )

        await self._store.set_with_ttl(
            self._keys.resend(uid), str(created_at), self._config.resend_interval_seconds
        )
        await self._counter.increment_daily_sends(uid)

        logger.info(
            "SMS code sent",
            uid=uid,
            phone=phone,
            message_id=receipt.message_id,
            is_resend=is_resend,
        )
        return MFAResult.ok(
            "Verification code sent",
            message_id=receipt.message_id,
            expires_in=self._config.code_expiry_seconds,
        )

    @guard_store_errors("sms.setup")
    async def setup(self, uid: str, phone: str) -> MFAResult:
        status = await self._status.get(uid)
        if status.is_enabled(MFAMethod.SMS):
            return MFAResult.fail(
                VerificationResult.ALREADY_ENABLED, "SMS verification is already enabled"
            )

        sent = await self.send(uid, phone)
        if not sent.success:
            return sent

        await self._status.mark_pending(uid, MFAMethod.SMS)
        logger.info("SMS setup started", uid=uid, phone=phone)
        return MFAResult.ok(
            "Verification code sent, enter it to finish setup", **sent.data
        )

    @guard_store_errors("sms.verify")
    async def verify(self, uid: str, code: str) -> MFAResult:
        key = self._keys.sms_challenge(uid)
        raw, challenge = await self._load(uid)
        if challenge is None:
            if raw is not None:
                await self._store.delete(key)
            return MFAResult.fail(
                VerificationResult.EXPIRED, "Verification code expired or not found"
            )

        now_ms = self._now_ms()
        if challenge.is_expired(now_ms):
            await self._store.compare_and_set(key, raw, None)
            return MFAResult.fail(VerificationResult.EXPIRED, "Verification code expired")

        if challenge.attempts >= self._config.max_attempts:
            await self._store.compare_and_set(key, raw, None)
            return MFAResult.fail(
                VerificationResult.TOO_MANY_ATTEMPTS,
                "Too many attempts for this code, request a new one",
            )

        if not hmac.compare_digest(code.strip().encode(), challenge.code.encode()):
            attempts = await self._record_failed_attempt(uid, challenge, now_ms)
            await self._counter.increment_all(uid, MFAMethod.SMS)
            logger.info("SMS code rejected", uid=uid, attempts=attempts)
            return MFAResult.fail(
                VerificationResult.INVALID_CODE,
                "Incorrect verification code",
                remaining_attempts=max(0, self._config.max_attempts - attempts),
            )

        if not await self._store.compare_and_set(key, raw, None):
            # Consumed or replaced by a concurrent request
            return MFAResult.fail(
                VerificationResult.EXPIRED, "Verification code expired or not found"
            )
        await self._counter.reset(uid, MFAMethod.SMS)

        logger.info("SMS code accepted", uid=uid)
        return MFAResult.ok("Verification successful")

    async def _record_failed_attempt(
        self, uid: str, challenge: SMSChallenge, now_ms: int
    ) -> int:
        """Bump the challenge's attempts, keeping its remaining lifetime."""
        attempts = [challenge.attempts + 1]

        def bump(raw: str | None) -> Write | None:
            if raw is None:
                return None
            try:
                current = SMSChallenge.from_dict(decode_document(raw))
            except RecordDecodeError:
                return None
            if current.created_at_ms != challenge.created_at_ms:
                return None
            current.attempts += 1
            attempts[0] = current.attempts
            return Write(encode_document(current.to_dict()), current.remaining_ttl(now_ms))

        await atomic_update(
            self._store,
            self._keys.sms_challenge(uid),
            bump,
            record=f"sms_code:{uid}",
            max_retries=self._max_retries,
        )
        return attempts[0]

    @guard_store_errors("sms.enable")
    async def enable(self, uid: str, code: str) -> MFAResult:
        status = await self._status.get(uid)
        if status.is_enabled(MFAMethod.SMS):
            return MFAResult.fail(
                VerificationResult.ALREADY_ENABLED, "SMS verification is already enabled"
            )

        verified = await self.verify(uid, code)
        if not verified.success:
            return verified

        await self._status.mark_enabled(uid, MFAMethod.SMS)
        logger.info("SMS verification enabled", uid=uid)
        return MFAResult.ok("SMS verification enabled")

    @guard_store_errors("sms.disable")
    async def disable(self, uid: str) -> MFAResult:
        await self._store.delete(self._keys.sms_challenge(uid))
        await self._status.remove_method(uid, MFAMethod.SMS)
        logger.info("SMS verification disabled", uid=uid)
        return MFAResult.ok("SMS verification disabled")

    async def is_enabled(self, uid: str) -> bool:
        status = await self._status.get_or_default(uid)
        return status.is_enabled(MFAMethod.SMS)
