"""
Audit Trail
===========
Append-only audit log in the keyed store.

Writes are best effort: a failing audit write is logged and the
authentication flow carries on.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from ..config import AuthConfig
from ..crypto import generate_uuid
from ..storage import AUDIT_LOGS, SESSION_INDEX, KeyValueStore
from .event_types import AuditEventType
from .hashing import compute_entry_hash
from .models import AuditEntry

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86400


class AuditTrail:
    """Records security-relevant transitions."""

    def __init__(
        self,
        store: KeyValueStore,
        config: AuthConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self._clock = clock

    async def record(
        self,
        event_type: Union[AuditEventType, str],
        success: bool,
        message: str = "",
        session_id: Optional[str] = None,
        phone_number: Optional[str] = None,
        app_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditEntry]:
        """
        Append an audit entry.

        Args:
            event_type: Type of event
            success: Outcome of the audited decision
            message: Human-readable detail
            session_id: Affected session
            phone_number: Phone number involved
            app_id: Calling application
            ip_address: Client IP address
            user_agent: Client user agent
            request_id: Request correlation id
            details: Additional event data (never secrets)

        Returns:
            The stored entry, or None if the write failed
        """
        event_type_str = (
            event_type.value if isinstance(event_type, AuditEventType)
            else event_type
        )
        timestamp = self._clock()
        details = details or {}
        log_id = generate_uuid()

        digest = compute_entry_hash(
            log_id,
            timestamp,
            self.config.service_name,
            event_type_str,
            success,
            session_id,
            phone_number,
            app_id,
            ip_address,
            message,
            details,
        )
        entry = AuditEntry(
            log_id=log_id,
            event_type=event_type_str,
            timestamp=timestamp,
            success=success,
            message=message,
            service=self.config.service_name,
            digest=digest,
            session_id=session_id,
            phone_number=phone_number,
            app_id=app_id,
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
            details=details,
        )

        ttl = timestamp + self.config.audit_retention_days * SECONDS_PER_DAY
        try:
            await self.store.put(AUDIT_LOGS, entry.to_item(ttl))
        except Exception:
            logger.exception(
                "Audit write failed",
                event_type=event_type_str,
                session_id=session_id,
            )
            return None

        logger.info(
            "Audit event logged",
            log_id=log_id,
            event_type=event_type_str,
            success=success,
            session_id=session_id,
        )
        return entry

    async def entries_for_session(self, session_id: str) -> List[AuditEntry]:
        """Audit entries of a session, newest first. Operational reads only."""
        items = await self.store.query_by_secondary_key(AUDIT_LOGS, SESSION_INDEX, session_id)
        return [AuditEntry.from_item(item) for item in items]
