"""
Authentication Errors
=====================
Typed failure reasons and the exception hierarchy raised by the
authentication flow.

Every failure carries a FailureReason so callers can render a precise
response. Storage and queue details never cross this boundary: they are
collapsed into InternalError.
"""

from enum import Enum
from typing import Any, Optional


class FailureReason(str, Enum):
    """Machine-readable reason attached to every failed operation."""
    # Input
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELDS = "MISSING_FIELDS"
    INVALID_PHONE_NUMBER = "INVALID_PHONE_NUMBER"
    INVALID_OTP_FORMAT = "INVALID_OTP_FORMAT"

    # Identity
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"

    # Session
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_LOCKED = "SESSION_LOCKED"
    SESSION_ALREADY_VERIFIED = "SESSION_ALREADY_VERIFIED"

    # OTP
    NO_OTP_FOUND = "NO_OTP_FOUND"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_ALREADY_USED = "OTP_ALREADY_USED"
    INVALID_OTP = "INVALID_OTP"

    # Security
    PHONE_MISMATCH = "PHONE_MISMATCH"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"

    # Abuse
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Provider webhooks
    INVALID_SIGNATURE = "INVALID_SIGNATURE"

    # Debug read-back
    DEBUG_DISABLED = "DEBUG_DISABLED"
    DEBUG_FORBIDDEN = "DEBUG_FORBIDDEN"
    DEBUG_OTP_NOT_FOUND = "DEBUG_OTP_NOT_FOUND"

    # Collaborators
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AuthFlowError(Exception):
    """Base exception for all authentication flow failures."""

    default_message = "Authentication request failed"

    def __init__(
        self,
        reason: FailureReason,
        message: Optional[str] = None,
        details: Any = None,
    ):
        self.reason = reason
        self.message = message or self.default_message
        self.details = details
        super().__init__(f"[{reason.value}] {self.message}")


class InputError(AuthFlowError):
    """Malformed or missing input. No state was touched."""
    default_message = "Invalid request"


class InvalidCredentialsError(AuthFlowError):
    """Application credentials did not match."""
    default_message = "Invalid QR code credentials"


class ValidationFailure(AuthFlowError):
    """Session or OTP validation failed."""
    default_message = "Validation failed"


class SecurityViolation(AuthFlowError):
    """Fraud signal or brute force. The session has been locked."""
    default_message = "Session locked due to security violation"


class RateLimitExceeded(AuthFlowError):
    """Too many requests for a phone number or source IP."""
    default_message = "Too many requests. Please try again later."

    def __init__(
        self,
        reset_at: float,
        retry_after: int,
        kind: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(FailureReason.RATE_LIMIT_EXCEEDED, message)
        self.reset_at = reset_at
        self.retry_after = retry_after
        self.kind = kind


class DebugAccessError(AuthFlowError):
    """Debug OTP read-back is disabled or the caller is not allowed."""
    default_message = "Debug OTP read-back is not available"


class InternalError(AuthFlowError):
    """A collaborator (store, queue) failed. Details are only logged."""
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        super().__init__(FailureReason.INTERNAL_ERROR, message)


class ConfigError(Exception):
    """Raised when the service configuration is invalid."""
    pass
