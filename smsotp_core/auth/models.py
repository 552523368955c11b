"""
Orchestrator Results
====================
Successful outcomes of the authentication protocol steps.
"""

from dataclasses import dataclass


@dataclass
class IdentityValidated:
    """Step 1: identity accepted, session issued."""
    session_id: str
    expires_at: float


@dataclass
class OTPRequested:
    """Step 2: OTP issued and queued for SMS delivery."""
    session_id: str
    otp_id: str
    expires_at: float


@dataclass
class OTPVerified:
    """Step 3: OTP accepted, session verified."""
    session_id: str
    auth_token: str
    phone_number: str
    verified_at: float

    def __repr__(self) -> str:
        return f"OTPVerified(session_id={self.session_id!r}, verified_at={self.verified_at!r})"


@dataclass
class DebugOTP:
    """Demo read-back of a plaintext OTP."""
    session_id: str
    otp: str
    phone_number: str
    expires_at: float

    def __repr__(self) -> str:
        return f"DebugOTP(session_id={self.session_id!r})"
