"""
Audit Hashing
=============
Content digests for tamper-evident audit entries.

Requests are handled independently, so there is no process-wide previous
hash to chain from. Each entry instead carries a SHA-256 digest of its
canonical content, which verify_entry recomputes.
"""

import json
import hashlib
from typing import Dict, Any, Optional
import structlog

from .models import AuditEntry

logger = structlog.get_logger(__name__)


def compute_entry_hash(
    log_id: str,
    timestamp: float,
    service: str,
    event_type: str,
    success: bool,
    session_id: Optional[str],
    phone_number: Optional[str],
    app_id: Optional[str],
    ip_address: Optional[str],
    message: str,
    details: Dict[str, Any],
) -> str:
    """
    Compute the digest of an audit entry.

    Returns:
        SHA-256 hex digest of the canonical JSON content
    """
    hash_input = json.dumps({
        "log_id": log_id,
        "timestamp": timestamp,
        "service": service,
        "event_type": event_type,
        "success": success,
        "session_id": session_id,
        "phone_number": phone_number,
        "app_id": app_id,
        "ip_address": ip_address,
        "message": message,
        "details": details,
    }, sort_keys=True, separators=(',', ':'), default=str)

    return hashlib.sha256(hash_input.encode()).hexdigest()


def verify_entry(entry: AuditEntry) -> bool:
    """Recompute an entry's digest and compare."""
    expected = compute_entry_hash(
        entry.log_id,
        entry.timestamp,
        entry.service,
        entry.event_type,
        entry.success,
        entry.session_id,
        entry.phone_number,
        entry.app_id,
        entry.ip_address,
        entry.message,
        entry.details,
    )
    if entry.digest != expected:
        logger.warning(
            "Audit entry integrity violation",
            log_id=entry.log_id,
            expected_hash=expected[:16],
            actual_hash=entry.digest[:16],
        )
        return False
    return True
