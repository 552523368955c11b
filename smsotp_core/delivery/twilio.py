"""
Twilio SMS Provider
===================
Sends OTP messages through the Twilio Messages API and reads its status
callbacks.

Callbacks are signed with X-Twilio-Signature: base64(HMAC-SHA1(auth_token,
url + concatenated sorted key/value pairs)).
"""

import base64
import hashlib
import hmac
from typing import Any, Dict, Mapping, Optional

import httpx
import structlog

from ..otp import DeliveryStatus
from .provider import DeliveryReport, SendResult, SMSProvider

logger = structlog.get_logger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

# Twilio message statuses -> OTP record delivery status
STATUS_MAP = {
    "accepted": DeliveryStatus.QUEUED,
    "scheduled": DeliveryStatus.QUEUED,
    "queued": DeliveryStatus.QUEUED,
    "sending": DeliveryStatus.QUEUED,
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.DELIVERED,
    "undelivered": DeliveryStatus.UNDELIVERED,
    "failed": DeliveryStatus.FAILED,
    "canceled": DeliveryStatus.FAILED,
}


def map_status(twilio_status: Optional[str]) -> Optional[DeliveryStatus]:
    return STATUS_MAP.get((twilio_status or "").lower())


class TwilioSMSProvider(SMSProvider):
    """Twilio Messages API client."""

    name = "twilio"
    signature_header = "X-Twilio-Signature"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: Optional[str] = None,
        messaging_service_sid: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            account_sid: Twilio account SID (AC...)
            auth_token: Account auth token, also the callback signing key
            from_number: Sender number, used when no messaging service is set
            messaging_service_sid: Messaging service SID (MG...)
            timeout: HTTP timeout in seconds
            transport: Custom httpx transport (tests)
        """
        if not from_number and not messaging_service_sid:
            logger.warning("Twilio provider has neither a sender number nor a messaging service")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self.timeout = timeout
        self.messages_url = f"{TWILIO_API_BASE}/Accounts/{account_sid}/Messages.json"
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, config) -> "TwilioSMSProvider":
        """Build from an AuthConfig."""
        return cls(
            account_sid=config.twilio_account_sid,
            auth_token=config.twilio_auth_token,
            from_number=config.twilio_from_number or None,
            messaging_service_sid=config.twilio_messaging_service_sid,
        )

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            auth=(self.account_sid, self.auth_token),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send_sms(
        self,
        to: str,
        body: str,
        status_callback: Optional[str] = None,
    ) -> SendResult:
        if self._client is None:
            raise RuntimeError("Twilio provider used outside its context")

        form: Dict[str, Any] = {"To": to, "Body": body}
        if self.messaging_service_sid:
            form["MessagingServiceSid"] = self.messaging_service_sid
        else:
            form["From"] = self.from_number
        if status_callback:
            form["StatusCallback"] = status_callback

        try:
            response = await self._client.post(self.messages_url, data=form)
        except httpx.HTTPError as e:
            logger.warning("Twilio request failed", error_type=type(e).__name__)
            return SendResult.failed(error_message=f"Transport error: {type(e).__name__}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 201 and data.get("sid"):
            return SendResult(
                success=True,
                provider_message_id=data["sid"],
                delivery_status=map_status(data.get("status")) or DeliveryStatus.SENT,
                http_status=response.status_code,
            )

        return SendResult.failed(
            error_code=str(data.get("code") or response.status_code),
            error_message=data.get("message") or response.reason_phrase,
            http_status=response.status_code,
        )

    def compute_signature(self, url: str, params: Mapping[str, str]) -> str:
        payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
        digest = hmac.new(self.auth_token.encode(), payload.encode(), hashlib.sha1).digest()
        return base64.b64encode(digest).decode()

    def verify_callback(
        self,
        url: str,
        params: Mapping[str, str],
        signature: Optional[str],
    ) -> bool:
        if not signature or not url:
            return False
        expected = self.compute_signature(url, params)
        return hmac.compare_digest(signature.encode(), expected.encode())

    def parse_callback(self, params: Mapping[str, str]) -> DeliveryReport:
        provider_status = (params.get("MessageStatus") or params.get("SmsStatus") or "").lower()
        return DeliveryReport(
            provider_message_id=params.get("MessageSid") or params.get("SmsSid") or "",
            provider_status=provider_status,
            delivery_status=map_status(provider_status),
            error_code=params.get("ErrorCode") or None,
            error_message=params.get("ErrorMessage") or None,
        )
