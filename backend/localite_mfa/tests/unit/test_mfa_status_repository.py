"""Unit tests for MFA status records and their repository."""

import random
from datetime import UTC, datetime

import pytest

from localite_mfa.core.errors import ConcurrentUpdateError
from localite_mfa.mfa.domain.entities import MFAStatus, RecordDecodeError, encode_document
from localite_mfa.mfa.domain.enums import MFAMethod, MFAStatusKind

NOW = datetime(2026, 3, 14, 9, 0, tzinfo=UTC)


class TestMFAStatus:
    """Test the MFAStatus record transitions."""

    def test_default_is_disabled(self):
        status = MFAStatus.default("u1")

        assert status.status == MFAStatusKind.DISABLED
        assert status.enabled_methods == []
        assert status.pending_methods == []

    def test_pending_then_enabled(self):
        status = MFAStatus.default("u1")

        status.mark_pending(MFAMethod.TOTP, NOW)
        assert status.status == MFAStatusKind.PENDING

        status.mark_enabled(MFAMethod.TOTP, NOW)
        assert status.status == MFAStatusKind.ENABLED
        assert status.enabled_methods == [MFAMethod.TOTP]
        assert status.pending_methods == []

    def test_pending_does_not_demote_enabled_method(self):
        status = MFAStatus.default("u1")
        status.mark_enabled(MFAMethod.SMS, NOW)

        status.mark_pending(MFAMethod.SMS, NOW)

        assert status.enabled_methods == [MFAMethod.SMS]
        assert status.pending_methods == []

    def test_from_dict_repairs_overlap(self):
        """A method listed in both sets is treated as enabled."""
        status = MFAStatus.from_dict(
            {
                "uid": "u1",
                "status": "disabled",
                "enabledMethods": ["totp"],
                "pendingMethods": ["totp", "sms"],
            }
        )

        assert status.status == MFAStatusKind.ENABLED
        assert status.pending_methods == [MFAMethod.SMS]

    def test_from_dict_rejects_unknown_method(self):
        with pytest.raises(RecordDecodeError):
            MFAStatus.from_dict({"uid": "u1", "enabledMethods": ["carrier_pigeon"]})

    def test_from_dict_rejects_null_method_list(self):
        with pytest.raises(RecordDecodeError):
            MFAStatus.from_dict({"uid": "u1", "enabledMethods": None})

    def test_invariant_over_random_sequences(self):
        """status is enabled exactly when some method is enabled."""
        rng = random.Random(7)
        methods = list(MFAMethod)
        for _ in range(200):
            status = MFAStatus.default("u1")
            for _ in range(12):
                method = rng.choice(methods)
                action = rng.choice(
                    [status.mark_pending, status.mark_enabled, status.remove]
                )
                action(method, NOW)

                assert (status.status == MFAStatusKind.ENABLED) == bool(
                    status.enabled_methods
                )
                assert not set(status.enabled_methods) & set(status.pending_methods)
                if not status.enabled_methods:
                    expected = (
                        MFAStatusKind.PENDING
                        if status.pending_methods
                        else MFAStatusKind.DISABLED
                    )
                    assert status.status == expected


class TestMFAStatusRepository:
    """Test MFAStatusRepository."""

    @pytest.mark.asyncio
    async def test_absent_record_reads_as_disabled(self, status_repository, uid):
        status = await status_repository.get(uid)

        assert status.status == MFAStatusKind.DISABLED

    @pytest.mark.asyncio
    async def test_transitions_persist(self, status_repository, uid, clock):
        await status_repository.mark_pending(uid, MFAMethod.TOTP)
        await status_repository.mark_enabled(uid, MFAMethod.TOTP)
        await status_repository.mark_pending(uid, MFAMethod.SMS)

        status = await status_repository.get(uid)

        assert status.status == MFAStatusKind.ENABLED
        assert status.enabled_methods == [MFAMethod.TOTP]
        assert status.pending_methods == [MFAMethod.SMS]
        assert status.last_updated == clock.now()

    @pytest.mark.asyncio
    async def test_unreadable_record_is_replaced(self, status_repository, store, keys, uid):
        await store.set(keys.status(uid), "{not json")

        status = await status_repository.mark_pending(uid, MFAMethod.BACKUP_CODE)

        assert status.pending_methods == [MFAMethod.BACKUP_CODE]

    @pytest.mark.asyncio
    async def test_null_method_list_reads_as_disabled(
        self, mfa_service, store, keys, uid
    ):
        await store.set(
            keys.status(uid), '{"uid":"user-123","status":"enabled","enabledMethods":null}'
        )

        status = await mfa_service.get_status(uid)
        await mfa_service.setup_backup_codes(uid)

        assert status["status"] == "disabled"
        assert (await mfa_service.get_status(uid))["pendingMethods"] == ["backup_code"]

    @pytest.mark.asyncio
    async def test_get_or_default_on_outage(self, status_repository, store, uid):
        await status_repository.mark_enabled(uid, MFAMethod.TOTP)
        store.failing.add("get")

        status = await status_repository.get_or_default(uid)

        assert status.status == MFAStatusKind.DISABLED

    @pytest.mark.asyncio
    async def test_lost_races_retry(self, status_repository, store, uid, monkeypatch):
        """A concurrent writer forces a retry, and both changes survive."""
        original = store.compare_and_set
        raced = []

        async def racing_compare_and_set(key, expected, value, ttl=None):
            if not raced:
                raced.append(True)
                # Another request enables SMS between our read and write
                other = MFAStatus.default(uid)
                other.mark_enabled(MFAMethod.SMS, NOW)
                await store.set(key, encode_document(other.to_dict()))
            return await original(key, expected, value, ttl)

        monkeypatch.setattr(store, "compare_and_set", racing_compare_and_set)

        status = await status_repository.mark_enabled(uid, MFAMethod.TOTP)

        assert set(status.enabled_methods) == {MFAMethod.SMS, MFAMethod.TOTP}

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, status_repository, store, uid, monkeypatch):
        async def always_lose(key, expected, value, ttl=None):
            return False

        monkeypatch.setattr(store, "compare_and_set", always_lose)

        with pytest.raises(ConcurrentUpdateError):
            await status_repository.mark_pending(uid, MFAMethod.TOTP)
