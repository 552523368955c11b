"""
OTP Manager
===========
OTP issuance, hashed storage and verification.

Codes are hashed with HMAC-SHA256 keyed by the owning session id, so a
stored hash is only meaningful for that session. The plaintext code is
returned once from issue() and never written to the store or a log.

Each record carries a per-session sequence number from an atomic counter.
The session index sorts on it, so "latest" never depends on two records
having distinct creation times.
"""

import time
from typing import Callable, Optional

import structlog

from ..config import AuthConfig
from ..crypto import constant_time_equal, generate_otp, generate_uuid, hash_otp
from ..errors import FailureReason
from ..storage import (
    OTP_RECORDS,
    OTP_SEQUENCES,
    PROVIDER_MESSAGE_INDEX,
    SESSION_INDEX,
    ConditionFailedError,
    KeyValueStore,
)
from .models import DeliveryStatus, IssuedOTP, OTPRecord, OTPVerification

logger = structlog.get_logger(__name__)


class OTPManager:
    """Issues and verifies session-bound OTPs."""

    def __init__(
        self,
        store: KeyValueStore,
        config: AuthConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self._clock = clock

    async def issue(self, session_id: str) -> IssuedOTP:
        """
        Generate an OTP for a session and store its hash.

        Args:
            session_id: Owning session

        Returns:
            IssuedOTP carrying the plaintext code
        """
        now = self._clock()
        expires_at = now + self.config.otp_expiry_seconds
        ttl = expires_at + self.config.record_retention_seconds
        otp = generate_otp()
        record = OTPRecord(
            otp_id=generate_uuid(),
            session_id=session_id,
            hashed_otp=hash_otp(otp, session_id),
            created_at=now,
            expires_at=expires_at,
            sequence=await self._next_sequence(session_id, ttl),
            delivery_status=DeliveryStatus.QUEUED.value,
        )
        await self.store.put(OTP_RECORDS, record.to_item(ttl))

        logger.info(
            "OTP issued",
            session_id=session_id,
            otp_id=record.otp_id,
            sequence=record.sequence,
            expires_in=self.config.otp_expiry_seconds,
        )
        return IssuedOTP(otp=otp, otp_id=record.otp_id, expires_at=record.expires_at)

    async def _next_sequence(self, session_id: str, ttl: float) -> int:
        await self.store.put(
            OTP_SEQUENCES,
            {"sessionId": session_id, "issued": 0, "ttl": ttl},
            if_absent=True,
        )
        counter = await self.store.conditional_update(
            OTP_SEQUENCES,
            session_id,
            set_fields={"ttl": ttl},
            increment={"issued": 1},
        )
        return int(counter["issued"])

    async def latest(self, session_id: str) -> Optional[OTPRecord]:
        """Most recently issued OTP record of a session."""
        items = await self.store.query_by_secondary_key(
            OTP_RECORDS, SESSION_INDEX, session_id, limit=1
        )
        return OTPRecord.from_item(items[0]) if items else None

    async def get(self, otp_id: str) -> Optional[OTPRecord]:
        item = await self.store.get(OTP_RECORDS, otp_id)
        return OTPRecord.from_item(item) if item else None

    async def verify(self, session_id: str, provided_otp: str) -> OTPVerification:
        """
        Check a code against the session's most recent OTP.

        A match consumes the record with a conditional write on
        verified == False; a concurrent caller that loses gets
        OTP_ALREADY_USED. Session attempts are not touched here.
        """
        record = await self.latest(session_id)
        if record is None:
            logger.info("No OTP found", session_id=session_id)
            return OTPVerification(valid=False, reason=FailureReason.NO_OTP_FOUND)

        if record.verified:
            return OTPVerification(
                valid=False, reason=FailureReason.OTP_ALREADY_USED, otp_id=record.otp_id
            )

        now = self._clock()
        if record.is_expired(now):
            logger.info("OTP expired", session_id=session_id, otp_id=record.otp_id)
            return OTPVerification(
                valid=False, reason=FailureReason.OTP_EXPIRED, otp_id=record.otp_id
            )

        if not constant_time_equal(hash_otp(provided_otp, session_id), record.hashed_otp):
            logger.info("OTP mismatch", session_id=session_id, otp_id=record.otp_id)
            return OTPVerification(
                valid=False, reason=FailureReason.INVALID_OTP, otp_id=record.otp_id
            )

        try:
            await self.store.conditional_update(
                OTP_RECORDS,
                record.otp_id,
                set_fields={"verified": True, "verifiedAt": now},
                expected={"verified": False},
            )
        except ConditionFailedError:
            logger.warning(
                "OTP consumed concurrently",
                session_id=session_id,
                otp_id=record.otp_id,
            )
            return OTPVerification(
                valid=False, reason=FailureReason.OTP_ALREADY_USED, otp_id=record.otp_id
            )

        logger.info("OTP verified", session_id=session_id, otp_id=record.otp_id)
        return OTPVerification(valid=True, otp_id=record.otp_id)

    async def attach_provider_message(
        self,
        otp_id: str,
        provider_message_id: str,
        status: str = DeliveryStatus.SENT.value,
    ) -> bool:
        """
        Record the provider's message id after a successful send.

        Conditional on no id being attached yet, so a redelivered queue
        message cannot overwrite the first send.
        """
        try:
            await self.store.conditional_update(
                OTP_RECORDS,
                otp_id,
                set_fields={
                    "providerMessageId": provider_message_id,
                    "deliveryStatus": status,
                    "deliveryUpdatedAt": self._clock(),
                },
                expected={"providerMessageId": None},
            )
        except ConditionFailedError:
            logger.info("Provider message already attached", otp_id=otp_id)
            return False
        return True

    async def record_delivery_failure(
        self,
        otp_id: str,
        error_code: Optional[str],
        error_message: Optional[str],
    ) -> bool:
        """Record a permanent send failure reported by the SMS worker."""
        fields = {
            "deliveryStatus": DeliveryStatus.FAILED.value,
            "deliveryUpdatedAt": self._clock(),
        }
        if error_code is not None:
            fields["deliveryErrorCode"] = str(error_code)
        if error_message is not None:
            fields["deliveryErrorMessage"] = error_message
        try:
            await self.store.conditional_update(OTP_RECORDS, otp_id, set_fields=fields)
        except ConditionFailedError:
            logger.warning("OTP record gone before failure was recorded", otp_id=otp_id)
            return False
        return True

    async def record_delivery_status(
        self,
        provider_message_id: str,
        status: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[OTPRecord]:
        """
        Apply a provider status callback to the matching OTP record.

        Only delivery metadata changes; verified, expiresAt and the hash are
        never written here.

        Returns:
            The updated record, or None if no record carries this message id
        """
        items = await self.store.query_by_secondary_key(
            OTP_RECORDS, PROVIDER_MESSAGE_INDEX, provider_message_id, limit=1
        )
        if not items:
            logger.info("Delivery status for unknown message", provider_message_id=provider_message_id)
            return None

        fields = {"deliveryStatus": status, "deliveryUpdatedAt": self._clock()}
        if error_code is not None:
            fields["deliveryErrorCode"] = str(error_code)
        if error_message is not None:
            fields["deliveryErrorMessage"] = error_message

        try:
            updated = await self.store.conditional_update(
                OTP_RECORDS,
                items[0]["otpId"],
                set_fields=fields,
                expected={"providerMessageId": provider_message_id},
            )
        except ConditionFailedError:
            return None

        logger.info(
            "Delivery status recorded",
            otp_id=updated["otpId"],
            provider_message_id=provider_message_id,
            status=status,
        )
        return OTPRecord.from_item(updated)
