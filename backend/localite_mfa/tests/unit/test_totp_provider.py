"""Unit tests for the TOTP subsystem."""

import base64
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pyotp
import pytest

from localite_mfa.mfa.domain.enums import MFAMethod, MFAStatusKind, VerificationResult
from localite_mfa.tests.conftest import TEST_EMAIL


async def enrolled(totp_provider, uid):
    result = await totp_provider.setup(uid, TEST_EMAIL)
    assert result.success
    return result.data["secret"]


def code_at(secret, clock, offset_seconds=0):
    return pyotp.TOTP(secret).at(clock.now() + timedelta(seconds=offset_seconds))


class TestTOTPSetup:
    """Test TOTP enrollment."""

    @pytest.mark.asyncio
    async def test_setup_returns_enrollment_material(
        self, totp_provider, status_repository, uid
    ):
        result = await totp_provider.setup(uid, TEST_EMAIL)

        assert result.success is True
        secret = result.data["secret"]
        assert len(secret) == 32
        assert result.data["manual_entry_key"] == secret

        uri = urlparse(result.data["uri"])
        assert uri.scheme == "otpauth"
        assert uri.netloc == "totp"
        query = parse_qs(uri.query)
        assert query["secret"] == [secret]
        assert query["issuer"] == ["Localite"]

        status = await status_repository.get(uid)
        assert status.pending_methods == [MFAMethod.TOTP]
        assert status.status == MFAStatusKind.PENDING

    @pytest.mark.asyncio
    async def test_qr_code_is_svg_data_uri(self, totp_provider, uid):
        result = await totp_provider.setup(uid, TEST_EMAIL)

        prefix = "data:image/svg+xml;base64,"
        assert result.data["qr_code"].startswith(prefix)
        svg = base64.b64decode(result.data["qr_code"][len(prefix):])
        assert b"<svg" in svg

    @pytest.mark.asyncio
    async def test_setup_again_replaces_pending_secret(self, totp_provider, uid, clock):
        """Re-running setup before enabling invalidates the first secret."""
        first = await enrolled(totp_provider, uid)
        second = await enrolled(totp_provider, uid)

        assert first != second
        assert (await totp_provider.verify(uid, code_at(second, clock))).success

    @pytest.mark.asyncio
    async def test_setup_when_enabled(self, totp_provider, uid, clock):
        secret = await enrolled(totp_provider, uid)
        await totp_provider.enable(uid, code_at(secret, clock))

        result = await totp_provider.setup(uid, TEST_EMAIL)

        assert result.success is False
        assert result.result == VerificationResult.ALREADY_ENABLED
        assert "secret" not in result.data


class TestTOTPVerify:
    """Test TOTP code validation."""

    @pytest.mark.asyncio
    async def test_not_set_up(self, totp_provider, uid):
        result = await totp_provider.verify(uid, "123456")

        assert result.result == VerificationResult.NOT_SET_UP

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [-30, 0, 30])
    async def test_accepts_adjacent_steps(self, totp_provider, uid, clock, offset):
        secret = await enrolled(totp_provider, uid)

        result = await totp_provider.verify(uid, code_at(secret, clock, offset))

        assert result.success is True
        assert result.result == VerificationResult.SUCCESS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [-90, 90])
    async def test_rejects_distant_steps(self, totp_provider, uid, clock, offset):
        secret = await enrolled(totp_provider, uid)

        result = await totp_provider.verify(uid, code_at(secret, clock, offset))

        assert result.result == VerificationResult.INVALID_CODE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef"])
    async def test_rejects_malformed_codes(self, totp_provider, uid, code):
        await enrolled(totp_provider, uid)

        result = await totp_provider.verify(uid, code)

        assert result.result == VerificationResult.INVALID_CODE

    @pytest.mark.asyncio
    async def test_code_follows_the_clock(self, totp_provider, uid, clock):
        """A code stops working once the clock moves past the window."""
        secret = await enrolled(totp_provider, uid)
        code = code_at(secret, clock)

        clock.advance(120)

        assert (await totp_provider.verify(uid, code)).success is False

    @pytest.mark.asyncio
    async def test_remaining_seconds(self, totp_provider):
        # The fixture clock sits 23 seconds into its 30 second step
        assert totp_provider.remaining_seconds() == 7


class TestTOTPEnableDisable:
    """Test TOTP enable and disable."""

    @pytest.mark.asyncio
    async def test_enable_with_valid_code(
        self, totp_provider, status_repository, uid, clock
    ):
        secret = await enrolled(totp_provider, uid)

        result = await totp_provider.enable(uid, totp_provider.current_code(secret))

        assert result.success is True
        assert result.data["enabled_at"] == clock.now().isoformat()
        assert await totp_provider.is_enabled(uid) is True
        status = await status_repository.get(uid)
        assert status.enabled_methods == [MFAMethod.TOTP]
        assert status.status == MFAStatusKind.ENABLED

    @pytest.mark.asyncio
    async def test_enable_with_wrong_code(self, totp_provider, uid, clock):
        secret = await enrolled(totp_provider, uid)

        result = await totp_provider.enable(uid, code_at(secret, clock, 300))

        assert result.result == VerificationResult.INVALID_CODE
        assert await totp_provider.is_enabled(uid) is False

    @pytest.mark.asyncio
    async def test_enable_twice(self, totp_provider, uid, clock):
        secret = await enrolled(totp_provider, uid)
        await totp_provider.enable(uid, code_at(secret, clock))

        result = await totp_provider.enable(uid, code_at(secret, clock))

        assert result.result == VerificationResult.ALREADY_ENABLED

    @pytest.mark.asyncio
    async def test_enable_without_setup(self, totp_provider, uid):
        result = await totp_provider.enable(uid, "123456")

        assert result.result == VerificationResult.NOT_SET_UP

    @pytest.mark.asyncio
    async def test_disable(self, totp_provider, status_repository, uid, clock):
        secret = await enrolled(totp_provider, uid)
        await totp_provider.enable(uid, code_at(secret, clock))

        result = await totp_provider.disable(uid)

        assert result.success is True
        assert await totp_provider.is_enabled(uid) is False
        assert (await totp_provider.verify(uid, code_at(secret, clock))).result == (
            VerificationResult.NOT_SET_UP
        )
        status = await status_repository.get(uid)
        assert status.status == MFAStatusKind.DISABLED

    @pytest.mark.asyncio
    async def test_store_outage(self, totp_provider, store, uid):
        """Store failures come back as results instead of exceptions."""
        store.failing.add("*")

        result = await totp_provider.setup(uid, TEST_EMAIL)

        assert result.success is False
        assert result.result == VerificationResult.STORE_UNAVAILABLE
        assert await totp_provider.is_enabled(uid) is False
