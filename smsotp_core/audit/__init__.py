"""
Audit Module
============
Append-only, tamper-evident audit trail of authentication decisions.
"""

from .event_types import AuditEventType
from .models import AuditEntry
from .hashing import compute_entry_hash, verify_entry
from .trail import AuditTrail

__all__ = [
    # Event Types
    "AuditEventType",
    # Models
    "AuditEntry",
    # Hashing
    "compute_entry_hash",
    "verify_entry",
    # Trail
    "AuditTrail",
]
