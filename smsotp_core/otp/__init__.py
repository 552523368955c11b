"""
OTP Module
==========
Session-bound OTP issuance, verification and delivery tracking.
"""

from .models import DeliveryStatus, OTPRecord, IssuedOTP, OTPVerification
from .manager import OTPManager
from .debug import DebugOTPReadback

__all__ = [
    # Models
    "DeliveryStatus",
    "OTPRecord",
    "IssuedOTP",
    "OTPVerification",
    # Managers
    "OTPManager",
    "DebugOTPReadback",
]
