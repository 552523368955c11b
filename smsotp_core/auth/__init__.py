"""
Authentication Module
=====================
Orchestrates the phone OTP authentication protocol.
"""

from .context import RequestContext
from .models import IdentityValidated, OTPRequested, OTPVerified, DebugOTP
from .service import AuthenticationService

__all__ = [
    "RequestContext",
    # Results
    "IdentityValidated",
    "OTPRequested",
    "OTPVerified",
    "DebugOTP",
    # Orchestrator
    "AuthenticationService",
]
