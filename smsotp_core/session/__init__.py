"""
Session Module
==============
Authentication session lifecycle.
"""

from .models import SessionStatus, Session, SessionValidation, OPEN_STATUSES
from .manager import SessionManager

__all__ = [
    # Models
    "SessionStatus",
    "Session",
    "SessionValidation",
    "OPEN_STATUSES",
    # Manager
    "SessionManager",
]
