"""
Unit Tests for OTP Issuance and Verification
============================================
"""

import pytest


def _manager(store, config, clock):
    from smsotp_core.otp import OTPManager

    return OTPManager(store, config, clock=clock)


class TestOTPIssue:
    """Tests for OTPManager.issue."""

    @pytest.mark.asyncio
    async def test_issue_stores_hash_only(self, store, config, clock):
        """The store never holds the plaintext code."""
        from smsotp_core.crypto import hash_otp
        from smsotp_core.storage import OTP_RECORDS

        issued = await _manager(store, config, clock).issue("session-1")

        items = store.dump(OTP_RECORDS)
        assert len(items) == 1
        assert issued.otp not in [str(v) for v in items[0].values()]
        assert items[0]["hashedOTP"] == hash_otp(issued.otp, "session-1")
        assert items[0]["verified"] is False
        assert items[0]["expiresAt"] == clock() + 300
        assert items[0]["deliveryStatus"] == "queued"

    @pytest.mark.asyncio
    async def test_issued_repr_hides_code(self, store, config, clock):
        """IssuedOTP never prints its code."""
        issued = await _manager(store, config, clock).issue("session-1")

        assert issued.otp not in repr(issued)

    @pytest.mark.asyncio
    async def test_latest_is_newest(self, store, config, clock):
        """latest returns the most recently issued record."""
        manager = _manager(store, config, clock)
        await manager.issue("session-1")
        clock.advance(1)
        second = await manager.issue("session-1")

        latest = await manager.latest("session-1")

        assert latest.otp_id == second.otp_id

    @pytest.mark.asyncio
    async def test_same_tick_issues_are_ordered(self, store, config, clock, monkeypatch):
        """Two codes issued at the same instant: only the second is live."""
        from smsotp_core.crypto import hash_otp
        from smsotp_core.errors import FailureReason

        codes = iter(["111111", "222222"])
        monkeypatch.setattr("smsotp_core.otp.manager.generate_otp", lambda: next(codes))
        manager = _manager(store, config, clock)

        first = await manager.issue("session-1")
        second = await manager.issue("session-1")
        latest = await manager.latest("session-1")

        assert latest.otp_id == second.otp_id
        assert latest.sequence == 2
        assert latest.hashed_otp == hash_otp("222222", "session-1")
        assert (await manager.get(first.otp_id)).sequence == 1
        assert (await manager.verify("session-1", "111111")).reason == FailureReason.INVALID_OTP
        assert (await manager.verify("session-1", "222222")).valid is True

    @pytest.mark.asyncio
    async def test_sequences_are_per_session(self, store, config, clock):
        manager = _manager(store, config, clock)
        await manager.issue("session-1")
        await manager.issue("session-1")

        await manager.issue("session-2")

        assert (await manager.latest("session-2")).sequence == 1

    @pytest.mark.asyncio
    async def test_same_tick_issues_on_redis(self, config):
        """The Redis index orders by sequence, not by member id."""
        fakeredis = pytest.importorskip("fakeredis")
        pytest.importorskip("lupa")
        from smsotp_core.storage import RedisStore

        store = RedisStore(fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True))
        manager = _manager(store, config, lambda: 1_700_000_000.0)
        issued = [await manager.issue("session-1") for _ in range(5)]

        latest = await manager.latest("session-1")

        assert latest.otp_id == issued[-1].otp_id
        assert latest.sequence == 5


class TestOTPVerify:
    """Tests for OTPManager.verify."""

    @pytest.mark.asyncio
    async def test_correct_code_verifies_once(self, store, config, clock):
        """A code is accepted once, then reported as used."""
        from smsotp_core.errors import FailureReason

        manager = _manager(store, config, clock)
        issued = await manager.issue("session-1")

        first = await manager.verify("session-1", issued.otp)
        second = await manager.verify("session-1", issued.otp)

        assert first.valid is True
        assert first.otp_id == issued.otp_id
        assert second.valid is False
        assert second.reason == FailureReason.OTP_ALREADY_USED

    @pytest.mark.asyncio
    async def test_wrong_code(self, store, config, clock):
        """A wrong code is INVALID_OTP and leaves the record usable."""
        from smsotp_core.errors import FailureReason

        manager = _manager(store, config, clock)
        issued = await manager.issue("session-1")
        wrong = "000000" if issued.otp != "000000" else "111111"

        result = await manager.verify("session-1", wrong)

        assert result.valid is False
        assert result.reason == FailureReason.INVALID_OTP
        assert (await manager.verify("session-1", issued.otp)).valid is True

    @pytest.mark.asyncio
    async def test_expired_code(self, store, config, clock):
        """Codes past expiresAt are rejected even when correct."""
        from smsotp_core.errors import FailureReason

        manager = _manager(store, config, clock)
        issued = await manager.issue("session-1")

        clock.advance(config.otp_expiry_seconds + 1)
        result = await manager.verify("session-1", issued.otp)

        assert result.reason == FailureReason.OTP_EXPIRED

    @pytest.mark.asyncio
    async def test_no_otp(self, store, config, clock):
        """Sessions without a code get NO_OTP_FOUND."""
        from smsotp_core.errors import FailureReason

        result = await _manager(store, config, clock).verify("session-1", "123456")

        assert result.reason == FailureReason.NO_OTP_FOUND

    @pytest.mark.asyncio
    async def test_code_is_bound_to_session(self, store, config, clock):
        """A code issued for one session does not verify another."""
        from smsotp_core.errors import FailureReason

        manager = _manager(store, config, clock)
        issued = await manager.issue("session-1")
        await manager.issue("session-2")

        result = await manager.verify("session-2", issued.otp)

        # Either a mismatch or, on a 1-in-a-million collision, success
        assert result.valid or result.reason == FailureReason.INVALID_OTP

    @pytest.mark.asyncio
    async def test_concurrent_verifies_consume_once(self, store, config, clock):
        """Parallel correct submissions succeed exactly once."""
        import asyncio

        manager = _manager(store, config, clock)
        issued = await manager.issue("session-1")

        results = await asyncio.gather(*[
            manager.verify("session-1", issued.otp) for _ in range(5)
        ])

        assert sum(1 for r in results if r.valid) == 1


class TestDeliveryMetadata:
    """Tests for delivery status bookkeeping."""

    @pytest.mark.asyncio
    async def test_attach_provider_message_once(self, store, config, clock):
        """The first provider message id wins."""
        manager = _manager(store, config, clock)
        issued = await manager.issue("session-1")

        assert await manager.attach_provider_message(issued.otp_id, "SM1") is True
        assert await manager.attach_provider_message(issued.otp_id, "SM2") is False

        record = await manager.get(issued.otp_id)
        assert record.provider_message_id == "SM1"
        assert record.delivery_status == "sent"

    @pytest.mark.asyncio
    async def test_status_update_leaves_verification_fields(self, store, config, clock):
        """Callbacks never touch verified, expiresAt or the hash."""
        manager = _manager(store, config, clock)
        issued = await manager.issue("session-1")
        await manager.attach_provider_message(issued.otp_id, "SM1")
        before = await manager.get(issued.otp_id)

        clock.advance(10)
        updated = await manager.record_delivery_status(
            "SM1", "undelivered", error_code="30003", error_message="Unreachable"
        )

        assert updated.delivery_status == "undelivered"
        assert updated.delivery_error_code == "30003"
        assert updated.delivery_updated_at == clock()
        assert updated.verified is False
        assert updated.expires_at == before.expires_at
        assert updated.hashed_otp == before.hashed_otp

    @pytest.mark.asyncio
    async def test_status_update_for_unknown_message(self, store, config, clock):
        """Unknown provider message ids are ignored."""
        result = await _manager(store, config, clock).record_delivery_status("SMX", "delivered")

        assert result is None

    @pytest.mark.asyncio
    async def test_record_delivery_failure(self, store, config, clock):
        """Permanent send failures are recorded on the record."""
        manager = _manager(store, config, clock)
        issued = await manager.issue("session-1")

        assert await manager.record_delivery_failure(issued.otp_id, 21211, "Invalid To") is True

        record = await manager.get(issued.otp_id)
        assert record.delivery_status == "failed"
        assert record.delivery_error_code == "21211"


class TestDebugReadback:
    """Tests for DebugOTPReadback."""

    def test_refuses_when_disabled(self, store, config):
        """Construction fails unless the flag is on."""
        from smsotp_core.errors import ConfigError
        from smsotp_core.otp import DebugOTPReadback

        with pytest.raises(ConfigError):
            DebugOTPReadback(store, config)

    def test_refuses_in_production(self, store):
        """Production never gets a read-back table."""
        from smsotp_core.config import AuthConfig
        from smsotp_core.errors import ConfigError
        from smsotp_core.otp import DebugOTPReadback

        config = AuthConfig(environment="production", debug_otp_readback=True)

        with pytest.raises(ConfigError):
            DebugOTPReadback(store, config)

    @pytest.mark.asyncio
    async def test_remember_and_read(self, store, config, clock):
        """Copies are readable until the code expires."""
        from smsotp_core.otp import DebugOTPReadback

        config.debug_otp_readback = True
        readback = DebugOTPReadback(store, config, clock=clock)

        await readback.remember("session-1", "042042", "otp-1", "+15551234567", clock() + 300)
        assert (await readback.read("session-1"))["otp"] == "042042"

        clock.advance(301)
        assert await readback.read("session-1") is None
