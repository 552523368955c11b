"""
Audit Event Types
=================
Security-relevant transitions recorded by the authentication flow.
"""

from enum import Enum


class AuditEventType(str, Enum):
    """Audit event types of the OTP authentication flow."""
    # Identity
    QR_VALIDATED = "QR_VALIDATED"

    # OTP
    OTP_REQUESTED = "OTP_REQUESTED"
    OTP_VERIFIED_SUCCESS = "OTP_VERIFIED_SUCCESS"
    OTP_VERIFIED_FAILED = "OTP_VERIFIED_FAILED"

    # Security
    SESSION_LOCKED = "SESSION_LOCKED"
    FRAUD_DETECTED = "FRAUD_DETECTED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Delivery
    SMS_DELIVERY_STATUS = "SMS_DELIVERY_STATUS"
