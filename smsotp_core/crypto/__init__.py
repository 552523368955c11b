"""
Crypto and Validation Utilities
===============================
OTP generation, salted hashing, constant-time comparison, identifiers,
phone number validation and auth tokens.
"""

from .hashing import (
    generate_otp,
    is_otp_format,
    hash_otp,
    constant_time_equal,
    generate_uuid,
    hash_phone,
)
from .phone import validate_phone_number, mask_phone
from .tokens import AuthTokenIssuer

__all__ = [
    # Hashing
    "generate_otp",
    "is_otp_format",
    "hash_otp",
    "constant_time_equal",
    "generate_uuid",
    "hash_phone",
    # Phone
    "validate_phone_number",
    "mask_phone",
    # Tokens
    "AuthTokenIssuer",
]
