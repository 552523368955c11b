"""
Phone Utilities
===============
Phone number validation and masking.
"""

import re

E164_PATTERN = re.compile(r"^\+[1-9][0-9]{6,14}$")


def validate_phone_number(phone: object) -> bool:
    """
    Validate E.164 phone number format.

    Leading '+', first digit 1-9, then 6 to 14 further digits.

    Args:
        phone: Phone number

    Returns:
        True if valid E.164 format
    """
    if not isinstance(phone, str):
        return False
    return bool(E164_PATTERN.fullmatch(phone))


def mask_phone(phone: str) -> str:
    """Mask a phone number for diagnostic logs (+1555***4567)."""
    if not phone:
        return ""
    if len(phone) <= 6:
        return "*" * len(phone)
    return f"{phone[:5]}***{phone[-4:]}"
