"""
OTP Hashing Utilities
=====================
Secure generation, hashing and comparison of OTP codes.
"""

import hashlib
import hmac
import secrets
import uuid
from typing import Union

from ..config import OTP_LENGTH


def generate_otp() -> str:
    """
    Generate a secure random numeric OTP.

    Uniform over 000000-999999; leading zeros are kept.

    Returns:
        OTP string of OTP_LENGTH digits
    """
    otp = secrets.randbelow(10 ** OTP_LENGTH)
    return str(otp).zfill(OTP_LENGTH)


def is_otp_format(value: object) -> bool:
    """Check that a value is exactly OTP_LENGTH ASCII digits."""
    return (
        isinstance(value, str)
        and len(value) == OTP_LENGTH
        and value.isascii()
        and value.isdigit()
    )


def hash_otp(otp: str, salt: str) -> str:
    """
    Hash an OTP with HMAC-SHA256 keyed by a per-session salt.

    The session id is the salt, so a stored hash is bound to its session
    and is useless for any other session of the same phone number.

    Args:
        otp: Plain OTP
        salt: Session id (or a per-record salt)

    Returns:
        64-character hex digest
    """
    return hmac.new(salt.encode(), otp.encode(), hashlib.sha256).hexdigest()


def constant_time_equal(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two values in constant time.

    Length is not secret, so a length mismatch fails immediately. Content is
    compared with hmac.compare_digest.
    """
    if isinstance(a, str):
        a = a.encode()
    if isinstance(b, str):
        b = b.encode()
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a, b)


def generate_uuid() -> str:
    """Generate an unguessable identifier for sessions, OTPs and audit entries."""
    return str(uuid.uuid4())


def hash_phone(phone: str, pepper: str = "") -> str:
    """
    Hash a phone number for privacy.

    Args:
        phone: E.164 phone number
        pepper: Optional secret pepper

    Returns:
        SHA-256 hash
    """
    return hashlib.sha256(f"{pepper}:{phone}".encode()).hexdigest()
