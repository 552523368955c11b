"""
Delivery Failure Classification
===============================
Decides whether a failed send should be retried.

Permanent failures (bad number, bad credentials, opted-out recipient) are
recorded and dropped. Everything else is treated as transient and handed
back to the queue for redelivery.
"""

from enum import Enum

from .provider import SendResult


class FailureKind(str, Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"


# Twilio error codes that will not succeed on retry
PERMANENT_ERROR_CODES = frozenset({
    "20003",  # Authentication failed
    "21211",  # Invalid 'To' phone number
    "21408",  # Region not enabled
    "21608",  # Unverified number (trial account)
    "21610",  # Recipient unsubscribed
    "21612",  # Cannot route to this number
    "21614",  # Not a mobile number
})

PERMANENT_ERROR_MARKERS = (
    "invalid phone number",
    "unverified number",
    "invalid credentials",
    "account suspended",
    "invalid to",
    "invalid from",
    "phone number is not verified",
    "not a valid phone number",
)


def classify_failure(result: SendResult) -> FailureKind:
    """Classify a failed SendResult."""
    if result.error_code and str(result.error_code) in PERMANENT_ERROR_CODES:
        return FailureKind.PERMANENT

    message = (result.error_message or "").lower()
    if any(marker in message for marker in PERMANENT_ERROR_MARKERS):
        return FailureKind.PERMANENT

    # 4xx other than throttling is a request the provider will keep refusing
    if result.http_status is not None and 400 <= result.http_status < 500 and result.http_status != 429:
        return FailureKind.PERMANENT

    return FailureKind.TRANSIENT
