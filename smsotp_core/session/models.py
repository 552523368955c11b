"""
Session Models
==============
Authentication session state and validation results.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass
from enum import Enum

from ..errors import FailureReason


class SessionStatus(str, Enum):
    """Session lifecycle states."""
    ACTIVE = "ACTIVE"
    OTP_GENERATED = "OTP_GENERATED"
    VERIFIED = "VERIFIED"
    LOCKED = "LOCKED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.VERIFIED, SessionStatus.LOCKED, SessionStatus.EXPIRED)


# States from which a session may still move forward
OPEN_STATUSES = (SessionStatus.ACTIVE.value, SessionStatus.OTP_GENERATED.value)


@dataclass
class Session:
    """An authentication session bound to one phone number."""
    session_id: str
    phone_number: str
    app_id: str
    status: SessionStatus
    attempts: int
    created_at: float
    expiry_at: float
    last_activity_at: float
    client_session_id: Optional[str] = None
    lock_reason: Optional[str] = None
    locked_at: Optional[float] = None
    verified_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return now > self.expiry_at

    @property
    def is_locked(self) -> bool:
        return self.status == SessionStatus.LOCKED

    def to_item(self, ttl: float) -> Dict[str, Any]:
        """Serialize for the keyed store."""
        item = {
            "sessionId": self.session_id,
            "phoneNumber": self.phone_number,
            "appId": self.app_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "createdAt": self.created_at,
            "expiryAt": self.expiry_at,
            "lastActivityAt": self.last_activity_at,
            "ttl": ttl,
        }
        optional = {
            "clientSessionId": self.client_session_id,
            "lockReason": self.lock_reason,
            "lockedAt": self.locked_at,
            "verifiedAt": self.verified_at,
        }
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Session":
        return cls(
            session_id=item["sessionId"],
            phone_number=item["phoneNumber"],
            app_id=item["appId"],
            status=SessionStatus(item["status"]),
            attempts=int(item.get("attempts") or 0),
            created_at=item["createdAt"],
            expiry_at=item["expiryAt"],
            last_activity_at=item.get("lastActivityAt", item["createdAt"]),
            client_session_id=item.get("clientSessionId"),
            lock_reason=item.get("lockReason"),
            locked_at=item.get("lockedAt"),
            verified_at=item.get("verifiedAt"),
        )


@dataclass
class SessionValidation:
    """Result of SessionManager.validate."""
    valid: bool
    session: Optional[Session] = None
    reason: Optional[FailureReason] = None
