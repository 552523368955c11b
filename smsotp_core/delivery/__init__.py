"""
Delivery Module
===============
SMS provider integration and the OTP delivery worker.
"""

from .provider import SMSProvider, SendResult, DeliveryReport
from .twilio import TwilioSMSProvider, map_status
from .classify import FailureKind, classify_failure, PERMANENT_ERROR_CODES
from .worker import (
    SMSDeliveryWorker,
    TransientDeliveryError,
    DeliveryOutcome,
    format_sms,
)

__all__ = [
    # Providers
    "SMSProvider",
    "SendResult",
    "DeliveryReport",
    "TwilioSMSProvider",
    "map_status",
    # Classification
    "FailureKind",
    "classify_failure",
    "PERMANENT_ERROR_CODES",
    # Worker
    "SMSDeliveryWorker",
    "TransientDeliveryError",
    "DeliveryOutcome",
    "format_sms",
]
