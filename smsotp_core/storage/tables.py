"""
Table Definitions
=================
Tables used by the OTP authentication service.
"""

from .base import IndexSpec, TableSpec

SESSION_INDEX = "sessionId-index"
PROVIDER_MESSAGE_INDEX = "providerMessageId-index"

SESSIONS = TableSpec(
    name="sessions",
    key_field="sessionId",
)

OTP_RECORDS = TableSpec(
    name="otp_records",
    key_field="otpId",
    indexes={
        SESSION_INDEX: IndexSpec(field="sessionId", sort_field="sequence"),
        PROVIDER_MESSAGE_INDEX: IndexSpec(field="providerMessageId", sort_field="createdAt"),
    },
)

# Per-session OTP issue counter; orders OTP_RECORDS within a session
OTP_SEQUENCES = TableSpec(
    name="otp_sequences",
    key_field="sessionId",
)

RATE_LIMITS = TableSpec(
    name="rate_limits",
    key_field="identifier",
)

AUDIT_LOGS = TableSpec(
    name="audit_logs",
    key_field="logId",
    indexes={
        SESSION_INDEX: IndexSpec(field="sessionId", sort_field="timestamp"),
    },
)

# Plaintext OTP copies for the demo read-back endpoint only
DEBUG_OTPS = TableSpec(
    name="debug_otps",
    key_field="sessionId",
)
