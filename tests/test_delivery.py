"""
Unit Tests for SMS Delivery
===========================
Twilio provider over a mocked httpx transport, failure classification and
the delivery worker.
"""

import pytest

from tests.conftest import PHONE


def _twilio(handler):
    import httpx

    from smsotp_core.delivery import TwilioSMSProvider

    return TwilioSMSProvider(
        account_sid="AC123",
        auth_token="twilio-token",
        from_number="+15550000000",
        transport=httpx.MockTransport(handler),
    )


class FakeProvider:
    """Provider stub returning scripted SendResults."""

    name = "fake"

    def __init__(self, *results):
        self.results = list(results)
        self.sent = []

    async def send_sms(self, to, body, status_callback=None):
        self.sent.append((to, body, status_callback))
        return self.results.pop(0)


class TestTwilioSMSProvider:
    """Tests for TwilioSMSProvider."""

    @pytest.mark.asyncio
    async def test_send_success(self):
        """A 201 response yields the provider message id."""
        import httpx

        from smsotp_core.otp import DeliveryStatus

        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["form"] = request.content.decode()
            return httpx.Response(201, json={"sid": "SM123", "status": "queued", "num_segments": "1"})

        async with _twilio(handler) as provider:
            result = await provider.send_sms(PHONE, "Your code", status_callback="https://cb")

        assert result.success is True
        assert result.provider_message_id == "SM123"
        assert result.delivery_status == DeliveryStatus.QUEUED
        assert seen["url"].endswith("/Accounts/AC123/Messages.json")
        assert "StatusCallback=https" in seen["form"]
        assert "From=%2B15550000000" in seen["form"]

    @pytest.mark.asyncio
    async def test_messaging_service_replaces_sender(self):
        import httpx

        from smsotp_core.delivery import TwilioSMSProvider

        seen = {}

        def handler(request):
            seen["form"] = request.content.decode()
            return httpx.Response(201, json={"sid": "SM1", "status": "accepted"})

        provider = TwilioSMSProvider(
            account_sid="AC123",
            auth_token="twilio-token",
            messaging_service_sid="MG1",
            transport=httpx.MockTransport(handler),
        )
        async with provider:
            await provider.send_sms(PHONE, "Your code")

        assert "MessagingServiceSid=MG1" in seen["form"]
        assert "From=" not in seen["form"]

    @pytest.mark.asyncio
    async def test_send_error_response(self):
        """Error responses carry the provider code and HTTP status."""
        import httpx

        def handler(request):
            return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

        async with _twilio(handler) as provider:
            result = await provider.send_sms(PHONE, "Your code")

        assert result.success is False
        assert result.error_code == "21211"
        assert result.http_status == 400

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Network failures become unsuccessful results."""
        import httpx

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _twilio(handler) as provider:
            result = await provider.send_sms(PHONE, "Your code")

        assert result.success is False
        assert result.http_status is None
        assert result.error_message == "Transport error: ConnectError"

    @pytest.mark.asyncio
    async def test_send_requires_open_client(self):
        provider = _twilio(lambda request: None)

        with pytest.raises(RuntimeError):
            await provider.send_sms(PHONE, "Your code")

    def test_callback_signature(self):
        """Signatures cover the URL and sorted form parameters."""
        provider = _twilio(lambda request: None)
        url = "https://example.com/webhooks/sms-status"
        params = {"MessageSid": "SM123", "MessageStatus": "delivered", "To": PHONE}
        signature = provider.compute_signature(url, params)

        assert provider.verify_callback(url, params, signature) is True
        assert provider.verify_callback(url, {**params, "MessageStatus": "failed"}, signature) is False
        assert provider.verify_callback(url + "?x=1", params, signature) is False
        assert provider.verify_callback(url, params, None) is False

    def test_parse_callback(self):
        """Status callbacks are reduced to DeliveryReports."""
        from smsotp_core.otp import DeliveryStatus

        provider = _twilio(lambda request: None)

        report = provider.parse_callback({
            "MessageSid": "SM123",
            "MessageStatus": "Undelivered",
            "ErrorCode": "30003",
        })

        assert report.provider_message_id == "SM123"
        assert report.delivery_status == DeliveryStatus.UNDELIVERED
        assert report.provider_status == "undelivered"
        assert report.error_code == "30003"
        assert report.error_message is None

    @pytest.mark.parametrize("status,expected", [
        ("accepted", "queued"),
        ("sending", "queued"),
        ("sent", "sent"),
        ("read", "delivered"),
        ("canceled", "failed"),
        ("receiving", None),
    ])
    def test_map_status(self, status, expected):
        from smsotp_core.delivery import map_status

        mapped = map_status(status)

        assert (mapped.value if mapped else None) == expected


class TestClassifyFailure:
    """Tests for classify_failure."""

    @pytest.mark.parametrize("kwargs,expected", [
        ({"error_code": "21211"}, "permanent"),
        ({"error_message": "Invalid phone number"}, "permanent"),
        ({"http_status": 401}, "permanent"),
        ({"http_status": 429}, "transient"),
        ({"http_status": 503}, "transient"),
        ({"error_message": "Transport error: ConnectError"}, "transient"),
    ])
    def test_classification(self, kwargs, expected):
        from smsotp_core.delivery import SendResult, classify_failure

        result = SendResult(success=False, **kwargs)

        assert classify_failure(result).value == expected


class TestSMSDeliveryWorker:
    """Tests for SMSDeliveryWorker."""

    async def _job(self, otps, session_id="session-1"):
        issued = await otps.issue(session_id)
        return issued, {
            "phoneNumber": PHONE,
            "otp": issued.otp,
            "sessionId": session_id,
            "otpId": issued.otp_id,
        }

    def _worker(self, provider, store, config, clock, queue=None):
        from smsotp_core.delivery import SMSDeliveryWorker
        from smsotp_core.otp import OTPManager
        from smsotp_core.queue import InMemoryQueue

        otps = OTPManager(store, config, clock=clock)
        return SMSDeliveryWorker(queue or InMemoryQueue(), provider, otps, config, clock=clock), otps

    @pytest.mark.asyncio
    async def test_sends_and_records_message_id(self, store, config, clock):
        from smsotp_core.delivery import DeliveryOutcome, SendResult

        provider = FakeProvider(SendResult(success=True, provider_message_id="SM1"))
        worker, otps = self._worker(provider, store, config, clock)
        issued, body = await self._job(otps)

        assert await worker.handle(body) == DeliveryOutcome.SENT

        to, text, _ = provider.sent[0]
        assert to == PHONE
        assert text == f"Your verification code is: {issued.otp}. Valid for 5 minutes."
        assert (await otps.get(issued.otp_id)).provider_message_id == "SM1"

    @pytest.mark.asyncio
    async def test_redelivery_is_skipped(self, store, config, clock):
        """A job whose OTP was already sent is not sent twice."""
        from smsotp_core.delivery import DeliveryOutcome, SendResult

        provider = FakeProvider(SendResult(success=True, provider_message_id="SM1"))
        worker, otps = self._worker(provider, store, config, clock)
        _, body = await self._job(otps)

        await worker.handle(body)

        assert await worker.handle(body) == DeliveryOutcome.SKIPPED
        assert len(provider.sent) == 1

    @pytest.mark.asyncio
    async def test_expired_otp_is_skipped(self, store, config, clock):
        from smsotp_core.delivery import DeliveryOutcome

        provider = FakeProvider()
        worker, otps = self._worker(provider, store, config, clock)
        _, body = await self._job(otps)
        clock.advance(config.otp_expiry_seconds + 1)

        assert await worker.handle(body) == DeliveryOutcome.SKIPPED
        assert provider.sent == []

    @pytest.mark.asyncio
    async def test_permanent_failure_is_recorded(self, store, config, clock):
        from smsotp_core.delivery import DeliveryOutcome, SendResult

        provider = FakeProvider(SendResult.failed(error_code="21211", error_message="Invalid To"))
        worker, otps = self._worker(provider, store, config, clock)
        issued, body = await self._job(otps)

        assert await worker.handle(body) == DeliveryOutcome.PERMANENT_FAILURE

        record = await otps.get(issued.otp_id)
        assert record.delivery_status == "failed"
        assert record.delivery_error_code == "21211"

    @pytest.mark.asyncio
    async def test_transient_failure_is_redelivered(self, store, config, clock):
        """Transient failures go back on the queue and succeed later."""
        from smsotp_core.delivery import DeliveryOutcome, SendResult
        from smsotp_core.queue import InMemoryQueue

        queue = InMemoryQueue()
        provider = FakeProvider(
            SendResult(success=False, http_status=503, error_message="Service Unavailable"),
            SendResult(success=True, provider_message_id="SM9"),
        )
        worker, otps = self._worker(provider, store, config, clock, queue=queue)
        issued, body = await self._job(otps)
        await queue.enqueue(body)

        assert await worker.process_next(timeout=0.1) == DeliveryOutcome.TRANSIENT_FAILURE
        assert await worker.process_next(timeout=0.1) == DeliveryOutcome.SENT
        assert await worker.process_next(timeout=0.01) is None
        assert (await otps.get(issued.otp_id)).provider_message_id == "SM9"

    @pytest.mark.asyncio
    async def test_malformed_job_is_dropped(self, store, config, clock):
        from smsotp_core.delivery import DeliveryOutcome
        from smsotp_core.queue import InMemoryQueue

        queue = InMemoryQueue()
        worker, _ = self._worker(FakeProvider(), store, config, clock, queue=queue)
        await queue.enqueue({"phoneNumber": "not-a-phone", "otp": "12"})

        assert await worker.process_next(timeout=0.1) == DeliveryOutcome.DROPPED
        assert queue.pending_count() == 0
        assert queue.dead_letters == []

    @pytest.mark.asyncio
    async def test_run_stops_on_event(self, store, config, clock):
        import asyncio

        worker, _ = self._worker(FakeProvider(), store, config, clock)
        stop = asyncio.Event()
        stop.set()

        await asyncio.wait_for(worker.run(stop, poll_timeout=0.01), timeout=1)


    @pytest.mark.asyncio
    async def test_run_survives_queue_errors(self, store, config, clock):
        """A failed receive is logged and retried instead of ending the loop."""
        import asyncio

        from smsotp_core.delivery import SendResult
        from smsotp_core.queue import InMemoryQueue, QueueError

        stop = asyncio.Event()

        class FlakyQueue(InMemoryQueue):
            failures = 1

            async def receive(self, timeout=1.0):
                if self.failures:
                    self.failures -= 1
                    raise QueueError("connection reset", operation="receive")
                return await super().receive(timeout)

            async def ack(self, message):
                await super().ack(message)
                stop.set()

        queue = FlakyQueue()
        provider = FakeProvider(SendResult(success=True, provider_message_id="SM1"))
        worker, otps = self._worker(provider, store, config, clock, queue=queue)
        issued, body = await self._job(otps)
        await queue.enqueue(body)

        await asyncio.wait_for(
            worker.run(stop, poll_timeout=0.01, error_backoff=0.01),
            timeout=2,
        )

        assert queue.failures == 0
        assert (await otps.get(issued.otp_id)).provider_message_id == "SM1"

    @pytest.mark.asyncio
    async def test_run_requeues_stale_messages_on_start(self, store, config, clock):
        import asyncio

        from smsotp_core.queue import InMemoryQueue

        calls = []
        stop = asyncio.Event()

        class ReapingQueue(InMemoryQueue):
            async def requeue_stale(self):
                calls.append("requeue")
                stop.set()
                return 0

        worker, _ = self._worker(FakeProvider(), store, config, clock, queue=ReapingQueue())

        await asyncio.wait_for(worker.run(stop, poll_timeout=0.01), timeout=1)

        assert calls == ["requeue"]
