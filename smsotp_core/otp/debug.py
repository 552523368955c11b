"""
Debug OTP Read-back
===================
Keeps plaintext OTP copies so a demo client can read them back without a
real phone. Only constructed when DEBUG_OTP_READBACK is on, which config
validation refuses in production.
"""

import time
from typing import Any, Callable, Dict, Optional

import structlog

from ..config import AuthConfig
from ..errors import ConfigError
from ..storage import DEBUG_OTPS, KeyValueStore

logger = structlog.get_logger(__name__)


class DebugOTPReadback:
    """Plaintext OTP side table for development and demos."""

    def __init__(
        self,
        store: KeyValueStore,
        config: AuthConfig,
        clock: Callable[[], float] = time.time,
    ):
        if not config.debug_otp_readback or config.is_production:
            raise ConfigError("Debug OTP read-back is disabled")
        self.store = store
        self.config = config
        self._clock = clock

    async def remember(
        self,
        session_id: str,
        otp: str,
        otp_id: str,
        phone_number: str,
        expires_at: float,
    ) -> None:
        await self.store.put(DEBUG_OTPS, {
            "sessionId": session_id,
            "otp": otp,
            "otpId": otp_id,
            "phoneNumber": phone_number,
            "createdAt": self._clock(),
            "expiresAt": expires_at,
            "ttl": expires_at,
        })
        logger.debug("Debug OTP copy stored", session_id=session_id, otp_id=otp_id)

    async def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(DEBUG_OTPS, session_id)
