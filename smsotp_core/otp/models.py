"""
OTP Models
==========
Data models and enums for OTP issuance, verification and delivery tracking.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass
from enum import Enum

from ..errors import FailureReason


class DeliveryStatus(str, Enum):
    """SMS delivery state of an OTP record."""
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    UNDELIVERED = "undelivered"
    FAILED = "failed"


@dataclass
class OTPRecord:
    """Stored OTP. Holds the salted hash, never the code itself."""
    otp_id: str
    session_id: str
    hashed_otp: str
    created_at: float
    expires_at: float
    sequence: int = 0  # Issue order within the session, starting at 1
    verified: bool = False
    verified_at: Optional[float] = None
    delivery_status: Optional[str] = None
    provider_message_id: Optional[str] = None
    delivery_error_code: Optional[str] = None
    delivery_error_message: Optional[str] = None
    delivery_updated_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_item(self, ttl: float) -> Dict[str, Any]:
        """Serialize for the keyed store."""
        item = {
            "otpId": self.otp_id,
            "sessionId": self.session_id,
            "hashedOTP": self.hashed_otp,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "sequence": self.sequence,
            "verified": self.verified,
            "ttl": ttl,
        }
        optional = {
            "verifiedAt": self.verified_at,
            "deliveryStatus": self.delivery_status,
            "providerMessageId": self.provider_message_id,
            "deliveryErrorCode": self.delivery_error_code,
            "deliveryErrorMessage": self.delivery_error_message,
            "deliveryUpdatedAt": self.delivery_updated_at,
        }
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "OTPRecord":
        return cls(
            otp_id=item["otpId"],
            session_id=item["sessionId"],
            hashed_otp=item["hashedOTP"],
            created_at=item["createdAt"],
            expires_at=item["expiresAt"],
            sequence=int(item.get("sequence", 0)),
            verified=bool(item.get("verified", False)),
            verified_at=item.get("verifiedAt"),
            delivery_status=item.get("deliveryStatus"),
            provider_message_id=item.get("providerMessageId"),
            delivery_error_code=item.get("deliveryErrorCode"),
            delivery_error_message=item.get("deliveryErrorMessage"),
            delivery_updated_at=item.get("deliveryUpdatedAt"),
        )


@dataclass
class IssuedOTP:
    """A freshly issued OTP. The plaintext exists only in this object."""
    otp: str
    otp_id: str
    expires_at: float

    def __repr__(self) -> str:
        return f"IssuedOTP(otp_id={self.otp_id!r}, expires_at={self.expires_at!r})"


@dataclass
class OTPVerification:
    """Result of OTPManager.verify."""
    valid: bool
    reason: Optional[FailureReason] = None
    otp_id: Optional[str] = None
