"""
Auth Token
==========
Signed, opaque authentication token issued after a successful OTP check.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Callable, Optional

from .hashing import constant_time_equal, hash_phone

TOKEN_VERSION = "1"


class AuthTokenIssuer:
    """Issues and verifies tokens bound to session, phone number and issuance time."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _sign(self, payload_b64: str) -> str:
        return hmac.new(
            self.secret.encode(),
            payload_b64.encode(),
            hashlib.sha256,
        ).hexdigest()

    def issue(self, session_id: str, phone_number: str, app_id: str) -> str:
        """
        Issue a token for a verified session.

        Args:
            session_id: Verified session ID
            phone_number: Phone number bound to the session
            app_id: Calling application

        Returns:
            Signed token "<payload>.<signature>"
        """
        issued_at = int(self._clock())
        payload = {
            "sid": session_id,
            "ph": hash_phone(phone_number, self.secret)[:16],
            "app": app_id,
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
            "ver": TOKEN_VERSION,
        }

        payload_json = json.dumps(payload, separators=(',', ':'), sort_keys=True)
        payload_b64 = base64.urlsafe_b64encode(payload_json.encode()).decode()

        return f"{payload_b64}.{self._sign(payload_b64)}"

    def verify(self, token: str, phone_number: Optional[str] = None) -> Optional[dict]:
        """
        Verify a token.

        Args:
            token: The token
            phone_number: If given, the token must be bound to this number

        Returns:
            Payload if valid, None otherwise
        """
        parts = token.split('.')
        if len(parts) != 2:
            return None

        payload_b64, signature = parts
        if not constant_time_equal(signature, self._sign(payload_b64)):
            return None

        try:
            payload = json.loads(base64.urlsafe_b64decode(payload_b64).decode())
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None

        if self._clock() > payload.get("exp", 0):
            return None

        if phone_number is not None:
            expected = hash_phone(phone_number, self.secret)[:16]
            if not constant_time_equal(str(payload.get("ph", "")), expected):
                return None

        return payload
