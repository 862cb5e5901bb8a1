"""
Integration tests for MFAService.

Runs the full stack wired by the DI container against the in-memory store,
the mock SMS channel and a controllable clock.
"""

from datetime import timedelta

import pyotp
import pytest

from localite_mfa.core.errors import StoreUnavailableError, ValidationError
from localite_mfa.mfa.domain.enums import MFAMethod, VerificationResult
from localite_mfa.tests.conftest import TEST_EMAIL, TEST_PHONE


def wrong_totp(secret, clock):
    """A well-formed code guaranteed to fall outside the tolerance window."""
    return pyotp.TOTP(secret).at(clock.now() + timedelta(minutes=10))


async def enable_totp(mfa_service, uid, clock):
    secret = (await mfa_service.setup_totp(uid, TEST_EMAIL)).data["secret"]
    result = await mfa_service.enable_totp(uid, pyotp.TOTP(secret).at(clock.now()))
    assert result.success
    return secret


class TestVerificationFlow:
    """Test verification through the attempt limiter."""

    @pytest.mark.asyncio
    async def test_totp_lockout(self, mfa_service, uid, clock):
        """Three wrong codes lock TOTP for the short window."""
        secret = await enable_totp(mfa_service, uid, clock)

        for _ in range(3):
            result = await mfa_service.verify(uid, wrong_totp(secret, clock), "totp")
            assert result.result == VerificationResult.INVALID_CODE

        locked = await mfa_service.verify(uid, pyotp.TOTP(secret).at(clock.now()), "totp")
        assert locked.result == VerificationResult.TOO_MANY_ATTEMPTS

        clock.advance(3600)
        unlocked = await mfa_service.verify(
            uid, pyotp.TOTP(secret).at(clock.now()), "totp"
        )
        assert unlocked.success is True

    @pytest.mark.asyncio
    async def test_success_resets_short_window_only(
        self, mfa_service, counter, uid, clock
    ):
        secret = await enable_totp(mfa_service, uid, clock)
        await mfa_service.verify(uid, wrong_totp(secret, clock), "totp")
        await mfa_service.verify(uid, wrong_totp(secret, clock), "totp")

        result = await mfa_service.verify(uid, pyotp.TOTP(secret).at(clock.now()), "totp")
        counts = await counter.get_counts(uid, MFAMethod.TOTP)

        assert result.success is True
        assert counts.short == 0
        # enable plus three verifications
        assert counts.daily == 4

    @pytest.mark.asyncio
    async def test_method_names_are_case_insensitive(self, mfa_service, uid, clock):
        secret = await enable_totp(mfa_service, uid, clock)

        result = await mfa_service.verify(uid, pyotp.TOTP(secret).at(clock.now()), "TOTP")

        assert result.success is True

    @pytest.mark.asyncio
    async def test_unknown_method(self, mfa_service, counter, uid):
        result = await mfa_service.verify(uid, "123456", "carrier_pigeon")

        assert result.result == VerificationResult.INVALID_CODE
        for method in MFAMethod:
            counts = await counter.get_counts(uid, method)
            assert (counts.short, counts.daily) == (0, 0)

    @pytest.mark.asyncio
    async def test_uncountable_attempt_is_refused(
        self, mfa_service, store, uid, monkeypatch
    ):
        """When the attempt cannot be recorded the subsystem is never asked."""
        calls = []

        async def spy(uid, code):
            calls.append(code)

        monkeypatch.setattr(mfa_service.totp, "verify", spy)
        store.failing.add("increment_with_ttl")

        result = await mfa_service.verify(uid, "123456", MFAMethod.TOTP)

        assert result.result == VerificationResult.STORE_UNAVAILABLE
        assert calls == []

    @pytest.mark.asyncio
    async def test_subsystem_exception_becomes_invalid_code(
        self, mfa_service, uid, monkeypatch
    ):
        async def broken(uid, code):
            raise RuntimeError("boom")

        monkeypatch.setattr(mfa_service.sms, "verify", broken)

        result = await mfa_service.verify(uid, "123456", "sms")

        assert result.success is False
        assert result.result == VerificationResult.INVALID_CODE

    @pytest.mark.asyncio
    async def test_backup_code_single_attempt_window(self, mfa_service, uid):
        codes = (await mfa_service.setup_backup_codes(uid)).data["codes"]
        await mfa_service.enable_backup_codes(uid)

        assert (await mfa_service.verify(uid, codes[0], "backup_code")).success
        wrong = await mfa_service.verify(uid, "ZZZZZZZZ", "backup_code")
        blocked = await mfa_service.verify(uid, codes[1], "backup_code")

        assert wrong.result == VerificationResult.INVALID_CODE
        assert blocked.result == VerificationResult.TOO_MANY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_empty_uid(self, mfa_service):
        with pytest.raises(ValidationError):
            await mfa_service.verify("", "123456", "totp")


class TestSMSFlow:
    """Test the SMS enrollment and resend flow through the service."""

    @pytest.mark.asyncio
    async def test_setup_enable_and_resend(self, mfa_service, sms_channel, uid, clock):
        setup = await mfa_service.setup_sms(uid, TEST_PHONE)
        assert setup.success is True

        too_soon = await mfa_service.send_sms(uid, TEST_PHONE, is_resend=True)
        assert too_soon.result == VerificationResult.RATE_LIMITED
        assert too_soon.data["retry_after"] == 60

        clock.advance(61)
        resent = await mfa_service.send_sms(uid, TEST_PHONE, is_resend=True)
        assert resent.success is True
        assert len(sms_channel.get_sent_messages()) == 2

        enabled = await mfa_service.enable_sms(uid, sms_channel.last_code_for(TEST_PHONE))
        assert enabled.success is True
        assert await mfa_service.is_method_enabled(uid, "sms") is True

    @pytest.mark.asyncio
    async def test_login_challenge(self, mfa_service, sms_channel, uid):
        await mfa_service.setup_sms(uid, TEST_PHONE)
        await mfa_service.enable_sms(uid, sms_channel.last_code_for(TEST_PHONE))

        await mfa_service.send_sms(uid, TEST_PHONE)
        code = sms_channel.last_code_for(TEST_PHONE)

        first = await mfa_service.verify(uid, code, "sms")
        replay = await mfa_service.verify(uid, code, "sms")

        assert first.success is True
        assert replay.result == VerificationResult.EXPIRED


class TestStatus:
    """Test status reporting."""

    @pytest.mark.asyncio
    async def test_status_without_records(self, mfa_service, uid):
        status = await mfa_service.get_status(uid)

        assert status["status"] == "disabled"
        assert status["enabledMethods"] == []
        assert status["pendingMethods"] == []
        assert status["backupCodesRemaining"] == 0
        assert await mfa_service.is_mfa_enabled(uid) is False

    @pytest.mark.asyncio
    async def test_status_with_methods(self, mfa_service, uid, clock):
        await enable_totp(mfa_service, uid, clock)
        codes = (await mfa_service.setup_backup_codes(uid)).data["codes"]
        await mfa_service.verify(uid, codes[0], "backup_code")

        status = await mfa_service.get_status(uid)

        assert status["uid"] == uid
        assert status["status"] == "enabled"
        assert status["enabledMethods"] == ["totp"]
        assert status["pendingMethods"] == ["backup_code"]
        assert status["backupCodesRemaining"] == 9
        assert await mfa_service.is_mfa_enabled(uid) is True
        assert await mfa_service.is_method_enabled(uid, MFAMethod.TOTP) is True
        assert await mfa_service.is_method_enabled(uid, "backup_code") is False
        assert await mfa_service.is_method_enabled(uid, "fax") is False

    @pytest.mark.asyncio
    async def test_disabling_last_method(self, mfa_service, uid, clock):
        await enable_totp(mfa_service, uid, clock)

        await mfa_service.disable_totp(uid)

        assert (await mfa_service.get_status(uid))["status"] == "disabled"

    @pytest.mark.asyncio
    async def test_status_during_outage(self, mfa_service, store, uid, clock):
        """Status reads fail open to a disabled record."""
        await enable_totp(mfa_service, uid, clock)
        store.failing.add("get")

        status = await mfa_service.get_status(uid)

        assert status["status"] == "disabled"
        assert status["backupCodesRemaining"] == 0


class TestMaintenance:
    """Test health checks and cleanup."""

    @pytest.mark.asyncio
    async def test_health_check(self, mfa_service, store):
        assert await mfa_service.health_check() is True

        store.failing.add("ping")

        assert await mfa_service.health_check() is False

    @pytest.mark.asyncio
    async def test_cleanup_abandoned_setups(
        self, mfa_service, store, keys, status_repository, uid, clock
    ):
        await mfa_service.setup_totp(uid, TEST_EMAIL)
        await mfa_service.setup_backup_codes(uid)

        assert await mfa_service.cleanup_expired_data() == 0

        clock.advance(25 * 3600)
        removed = await mfa_service.cleanup_expired_data()

        assert removed == 2
        assert await store.get(keys.totp_secret(uid)) is None
        assert await store.get(keys.backup_codes(uid)) is None
        status = await status_repository.get(uid)
        assert status.pending_methods == []

    @pytest.mark.asyncio
    async def test_cleanup_keeps_enabled_methods(self, mfa_service, store, keys, uid, clock):
        await enable_totp(mfa_service, uid, clock)
        clock.advance(48 * 3600)

        assert await mfa_service.cleanup_expired_data(uid) == 0
        assert await store.get(keys.totp_secret(uid)) is not None

    @pytest.mark.asyncio
    async def test_cleanup_unreadable_records(self, mfa_service, store, keys):
        await store.set(keys.totp_secret("user-a"), "{not json")
        await store.set(keys.backup_codes("user-b"), "[]")
        await store.set(keys.attempts("user-a", MFAMethod.TOTP), "2")

        removed = await mfa_service.cleanup_expired_data("user-a")

        assert removed == 1
        assert await store.get(keys.backup_codes("user-b")) == "[]"
        assert await store.get(keys.attempts("user-a", MFAMethod.TOTP)) == "2"

    @pytest.mark.asyncio
    async def test_cleanup_records_with_null_timestamps(self, mfa_service, store, keys):
        await store.set(
            keys.totp_secret("user-a"),
            '{"secret":"JBSWY3DPEHPK3PXP","enabled":false,"createdAt":null}',
        )
        await store.set(keys.backup_codes("user-a"), '{"codes":[],"enabled":false}')

        removed = await mfa_service.cleanup_expired_data("user-a")

        assert removed == 2
        assert await store.get(keys.totp_secret("user-a")) is None
        assert await store.get(keys.backup_codes("user-a")) is None

    @pytest.mark.asyncio
    async def test_cleanup_wildcard_uid_stays_scoped(self, mfa_service, store, keys):
        await store.set(keys.totp_secret("user-a"), "{not json")
        await store.set(keys.totp_secret("user-a:b"), "{not json")

        assert await mfa_service.cleanup_expired_data("user-*") == 0
        assert await mfa_service.cleanup_expired_data("user-a") == 1
        assert await store.get(keys.totp_secret("user-a:b")) == "{not json"

    @pytest.mark.asyncio
    async def test_cleanup_propagates_outage(self, mfa_service, store, uid):
        await mfa_service.setup_totp(uid, TEST_EMAIL)
        store.failing.add("get")

        with pytest.raises(StoreUnavailableError):
            await mfa_service.cleanup_expired_data()
