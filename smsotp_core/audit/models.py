"""
Audit Models
=============
Data models for audit log entries.
"""

from typing import Dict, Any, Optional
from dataclasses import dataclass, field


@dataclass
class AuditEntry:
    """An immutable audit log entry with a content digest."""
    log_id: str
    event_type: str
    timestamp: float
    success: bool
    message: str
    service: str
    digest: str
    session_id: Optional[str] = None
    phone_number: Optional[str] = None
    app_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_item(self, ttl: float) -> Dict[str, Any]:
        """Serialize for the keyed store."""
        item = {
            "logId": self.log_id,
            "eventType": self.event_type,
            "timestamp": self.timestamp,
            "success": self.success,
            "message": self.message,
            "service": self.service,
            "digest": self.digest,
            "details": self.details,
            "ttl": ttl,
        }
        optional = {
            "sessionId": self.session_id,
            "phoneNumber": self.phone_number,
            "appId": self.app_id,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "requestId": self.request_id,
        }
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "AuditEntry":
        return cls(
            log_id=item["logId"],
            event_type=item["eventType"],
            timestamp=item["timestamp"],
            success=bool(item["success"]),
            message=item.get("message", ""),
            service=item.get("service", ""),
            digest=item.get("digest", ""),
            session_id=item.get("sessionId"),
            phone_number=item.get("phoneNumber"),
            app_id=item.get("appId"),
            ip_address=item.get("ipAddress"),
            user_agent=item.get("userAgent"),
            request_id=item.get("requestId"),
            details=item.get("details") or {},
        )
