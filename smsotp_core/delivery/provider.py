"""
SMS Provider Interface
======================
What the delivery worker and the status webhook need from an SMS provider.

Providers report outcomes in DeliveryStatus terms, the same vocabulary the
OTP record stores, so nothing downstream knows provider status names.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

import structlog

from ..otp import DeliveryStatus

logger = structlog.get_logger(__name__)


@dataclass
class SendResult:
    """Outcome of one send attempt."""
    success: bool
    provider_message_id: Optional[str] = None
    delivery_status: DeliveryStatus = DeliveryStatus.SENT
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    http_status: Optional[int] = None  # None when the request never got a response

    @classmethod
    def failed(
        cls,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        http_status: Optional[int] = None,
    ) -> "SendResult":
        return cls(
            success=False,
            delivery_status=DeliveryStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
            http_status=http_status,
        )


@dataclass
class DeliveryReport:
    """A provider status callback, reduced to what the OTP record keeps."""
    provider_message_id: str
    provider_status: str
    delivery_status: Optional[DeliveryStatus]  # None for statuses we do not track
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class SMSProvider(ABC):
    """
    Abstract SMS provider.

    Use as an async context manager so HTTP clients are opened and closed
    around the worker's lifetime:

        async with TwilioSMSProvider(...) as provider:
            await provider.send_sms(to, body)
    """

    name: str = "base"
    signature_header: str = ""  # Request header carrying the callback signature

    async def open(self) -> None:
        """Acquire network resources."""

    async def close(self) -> None:
        """Release network resources."""

    async def __aenter__(self) -> "SMSProvider":
        await self.open()
        logger.info("SMS provider opened", provider=self.name)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
        logger.info("SMS provider closed", provider=self.name)

    @abstractmethod
    async def send_sms(
        self,
        to: str,
        body: str,
        status_callback: Optional[str] = None,
    ) -> SendResult:
        """
        Send one SMS.

        Args:
            to: Recipient phone number (E.164)
            body: Message text, contains the plaintext OTP
            status_callback: URL the provider should report delivery to

        Returns:
            SendResult. Transport errors are returned, not raised.
        """

    @abstractmethod
    def verify_callback(
        self,
        url: str,
        params: Mapping[str, str],
        signature: Optional[str],
    ) -> bool:
        """Check a status callback's signature against its public URL."""

    @abstractmethod
    def parse_callback(self, params: Mapping[str, str]) -> DeliveryReport:
        """Turn status callback form parameters into a DeliveryReport."""
