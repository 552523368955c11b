"""
SMS Delivery Worker
===================
Consumes OTP delivery jobs from the queue and sends them through the SMS
provider.

Job body: {"phoneNumber", "otp", "sessionId", "otpId"}.

Delivery is at-least-once, so a job is skipped when its OTP record already
carries a provider message id (sent by an earlier delivery), is verified or
has expired. Permanent provider errors are recorded on the OTP record and
the job is dropped; transient errors raise so the queue redelivers.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

import structlog

from ..config import AuthConfig
from ..crypto import is_otp_format, mask_phone, validate_phone_number
from ..metrics import SMS_DELIVERIES
from ..otp import OTPManager
from ..queue import MessageQueue, QueueError, QueueMessage
from ..storage import StoreError
from .provider import SMSProvider
from .classify import FailureKind, classify_failure

logger = structlog.get_logger(__name__)

SMS_TEMPLATE = "Your verification code is: {otp}. Valid for {minutes} minutes."


class TransientDeliveryError(Exception):
    """A send failed in a way that may succeed on redelivery."""

    def __init__(self, otp_id: str, error_code: Optional[str], error_message: Optional[str]):
        self.otp_id = otp_id
        self.error_code = error_code
        self.error_message = error_message
        super().__init__(f"SMS delivery failed (transient) for {otp_id}: {error_code}")


class DeliveryOutcome:
    SENT = "sent"
    SKIPPED = "skipped"
    DROPPED = "dropped"
    PERMANENT_FAILURE = "permanent_failure"
    TRANSIENT_FAILURE = "transient_failure"


def format_sms(otp: str, expiry_seconds: int) -> str:
    minutes = max(expiry_seconds // 60, 1)
    return SMS_TEMPLATE.format(otp=otp, minutes=minutes)


class SMSDeliveryWorker:
    """Sends queued OTPs and records delivery metadata."""

    def __init__(
        self,
        queue: MessageQueue,
        provider: SMSProvider,
        otps: OTPManager,
        config: AuthConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.queue = queue
        self.provider = provider
        self.otps = otps
        self.config = config
        self._clock = clock

    @staticmethod
    def _is_well_formed(body: Any) -> bool:
        if not isinstance(body, dict):
            return False
        for name in ("phoneNumber", "otp", "sessionId", "otpId"):
            if not isinstance(body.get(name), str) or not body[name]:
                return False
        return validate_phone_number(body["phoneNumber"]) and is_otp_format(body["otp"])

    async def handle(self, body: Dict[str, Any]) -> str:
        """
        Process one delivery job.

        Returns:
            A DeliveryOutcome value

        Raises:
            TransientDeliveryError: The job should be redelivered
        """
        if not self._is_well_formed(body):
            logger.error("Malformed delivery job dropped")
            SMS_DELIVERIES.labels(outcome=DeliveryOutcome.DROPPED).inc()
            return DeliveryOutcome.DROPPED

        otp_id = body["otpId"]
        session_id = body["sessionId"]
        log = logger.bind(otp_id=otp_id, session_id=session_id)

        record = await self.otps.get(otp_id)
        if record is None or record.session_id != session_id:
            log.warning("OTP record not found, delivery skipped")
            SMS_DELIVERIES.labels(outcome=DeliveryOutcome.SKIPPED).inc()
            return DeliveryOutcome.SKIPPED
        if record.provider_message_id:
            log.info("OTP already sent, delivery skipped")
            SMS_DELIVERIES.labels(outcome=DeliveryOutcome.SKIPPED).inc()
            return DeliveryOutcome.SKIPPED
        if record.verified or record.is_expired(self._clock()):
            log.info("OTP no longer usable, delivery skipped", verified=record.verified)
            SMS_DELIVERIES.labels(outcome=DeliveryOutcome.SKIPPED).inc()
            return DeliveryOutcome.SKIPPED

        result = await self.provider.send_sms(
            to=body["phoneNumber"],
            body=format_sms(body["otp"], self.config.otp_expiry_seconds),
            status_callback=self.config.status_callback_url,
        )

        if result.success:
            await self.otps.attach_provider_message(
                otp_id, result.provider_message_id, status=result.delivery_status.value
            )
            log.info(
                "SMS sent",
                phone=mask_phone(body["phoneNumber"]),
                provider_message_id=result.provider_message_id,
            )
            SMS_DELIVERIES.labels(outcome=DeliveryOutcome.SENT).inc()
            return DeliveryOutcome.SENT

        if classify_failure(result) == FailureKind.PERMANENT:
            await self.otps.record_delivery_failure(
                otp_id, result.error_code, result.error_message
            )
            log.error(
                "Permanent SMS failure, not retrying",
                phone=mask_phone(body["phoneNumber"]),
                error_code=result.error_code,
            )
            SMS_DELIVERIES.labels(outcome=DeliveryOutcome.PERMANENT_FAILURE).inc()
            return DeliveryOutcome.PERMANENT_FAILURE

        log.warning("Transient SMS failure, will retry", error_code=result.error_code)
        SMS_DELIVERIES.labels(outcome=DeliveryOutcome.TRANSIENT_FAILURE).inc()
        raise TransientDeliveryError(otp_id, result.error_code, result.error_message)

    async def process_next(self, timeout: float = 1.0) -> Optional[str]:
        """
        Receive and handle one queue message.

        Returns:
            The outcome, or None if the queue stayed empty
        """
        message: Optional[QueueMessage] = await self.queue.receive(timeout)
        if message is None:
            return None

        try:
            outcome = await self.handle(message.body)
        except TransientDeliveryError:
            await self.queue.release(message)
            return DeliveryOutcome.TRANSIENT_FAILURE
        except Exception:
            logger.exception("Delivery job failed", message_id=message.id)
            await self.queue.release(message)
            return DeliveryOutcome.TRANSIENT_FAILURE

        await self.queue.ack(message)
        return outcome

    async def run(
        self,
        stop_event: Optional[asyncio.Event] = None,
        poll_timeout: float = 1.0,
        error_backoff: float = 1.0,
    ) -> None:
        """
        Process messages until stop_event is set.

        Stale in-flight messages are requeued on start and then once per
        visibility timeout. Queue and store outages are logged and retried
        after error_backoff seconds.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info("SMS delivery worker started", provider=self.provider.name)
        next_requeue = 0.0
        while not stop_event.is_set():
            try:
                if time.monotonic() >= next_requeue:
                    await self.queue.requeue_stale()
                    next_requeue = time.monotonic() + self.config.queue_visibility_timeout_seconds
                await self.process_next(poll_timeout)
            except (QueueError, StoreError):
                logger.exception("Delivery loop error, backing off", backoff_seconds=error_backoff)
                await _wait(stop_event, error_backoff)
        logger.info("SMS delivery worker stopped")


async def _wait(stop_event: asyncio.Event, seconds: float) -> None:
    """Sleep for seconds, waking early if stop_event is set."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
