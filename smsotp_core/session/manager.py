"""
Session Manager
===============
Session lifecycle: creation, validation, phone binding, locking and expiry.

State machine:
    ACTIVE -> OTP_GENERATED -> VERIFIED
    ACTIVE | OTP_GENERATED -> EXPIRED | LOCKED

VERIFIED, EXPIRED and LOCKED are terminal. Every transition is a
conditional write on the current status so concurrent requests cannot move
a session out of a terminal state.
"""

import time
from typing import Callable, Optional

import structlog

from ..config import AuthConfig
from ..crypto import constant_time_equal, generate_uuid
from ..errors import FailureReason
from ..storage import SESSIONS, ConditionFailedError, KeyValueStore
from .models import OPEN_STATUSES, Session, SessionStatus, SessionValidation

logger = structlog.get_logger(__name__)


class SessionManager:
    """Creates and transitions authentication sessions."""

    def __init__(
        self,
        store: KeyValueStore,
        config: AuthConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self.config.otp_max_attempts

    def _ttl(self, expiry_at: float) -> float:
        return expiry_at + self.config.record_retention_seconds

    async def create(
        self,
        phone_number: str,
        app_id: str,
        client_session_id: Optional[str] = None,
    ) -> Session:
        """
        Mint a new ACTIVE session bound to a phone number.

        Args:
            phone_number: E.164 phone number (already validated)
            app_id: Calling application
            client_session_id: Optional client-side correlation id

        Returns:
            The new session
        """
        now = self._clock()
        session = Session(
            session_id=generate_uuid(),
            phone_number=phone_number,
            app_id=app_id,
            status=SessionStatus.ACTIVE,
            attempts=0,
            created_at=now,
            expiry_at=now + self.config.session_expiry_seconds,
            last_activity_at=now,
            client_session_id=client_session_id,
        )
        await self.store.put(SESSIONS, session.to_item(self._ttl(session.expiry_at)))

        logger.info(
            "Session created",
            session_id=session.session_id,
            app_id=app_id,
            expires_in=self.config.session_expiry_seconds,
        )
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        item = await self.store.get(SESSIONS, session_id)
        return Session.from_item(item) if item else None

    async def validate(self, session_id: str) -> SessionValidation:
        """
        Check that a session can still be used.

        An open session found past its expiry is moved to EXPIRED here.
        """
        session = await self.get(session_id)
        if session is None:
            return SessionValidation(valid=False, reason=FailureReason.SESSION_NOT_FOUND)

        now = self._clock()
        if session.is_expired(now) and session.status.value in OPEN_STATUSES:
            await self._expire(session, now)
            return SessionValidation(
                valid=False, session=session, reason=FailureReason.SESSION_EXPIRED
            )

        if session.status == SessionStatus.LOCKED:
            return SessionValidation(
                valid=False, session=session, reason=FailureReason.SESSION_LOCKED
            )
        if session.status == SessionStatus.VERIFIED:
            return SessionValidation(
                valid=False, session=session, reason=FailureReason.SESSION_ALREADY_VERIFIED
            )
        if session.status == SessionStatus.EXPIRED:
            return SessionValidation(
                valid=False, session=session, reason=FailureReason.SESSION_EXPIRED
            )

        return SessionValidation(valid=True, session=session)

    async def _expire(self, session: Session, now: float) -> None:
        try:
            await self.store.conditional_update(
                SESSIONS,
                session.session_id,
                set_fields={
                    "status": SessionStatus.EXPIRED.value,
                    "lastActivityAt": now,
                },
                expected={"status": OPEN_STATUSES},
            )
            session.status = SessionStatus.EXPIRED
            logger.info("Session expired", session_id=session.session_id)
        except ConditionFailedError:
            # Another request already moved it to a terminal state
            current = await self.get(session.session_id)
            if current is not None:
                session.status = current.status

    def validate_phone_binding(self, session: Session, provided_phone: str) -> bool:
        """Exact match of the provided phone number against the bound one."""
        if not isinstance(provided_phone, str):
            return False
        return constant_time_equal(session.phone_number, provided_phone)

    async def lock(self, session_id: str, reason: str) -> bool:
        """
        Lock a session.

        Idempotent: a session that is already terminal is left untouched, so
        the first lock reason is the one retained.

        Returns:
            True if this call performed the transition
        """
        now = self._clock()
        try:
            await self.store.conditional_update(
                SESSIONS,
                session_id,
                set_fields={
                    "status": SessionStatus.LOCKED.value,
                    "lockReason": reason,
                    "lockedAt": now,
                    "lastActivityAt": now,
                },
                expected={"status": OPEN_STATUSES},
            )
        except ConditionFailedError as e:
            logger.info(
                "Session lock skipped",
                session_id=session_id,
                reason=reason,
                missing=e.missing,
            )
            return False

        logger.warning("Session locked", session_id=session_id, reason=reason)
        return True

    async def increment_attempts(self, session_id: str) -> int:
        """
        Atomically count one failed verification.

        Returns:
            The new attempt count
        """
        updated = await self.store.conditional_update(
            SESSIONS,
            session_id,
            set_fields={"lastActivityAt": self._clock()},
            increment={"attempts": 1},
        )
        return int(updated["attempts"])

    def is_max_attempts_exceeded(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def remaining_attempts(self, attempts: int) -> int:
        return max(self.max_attempts - attempts, 0)

    async def mark_otp_generated(self, session_id: str) -> bool:
        return await self._transition(session_id, SessionStatus.OTP_GENERATED)

    async def mark_verified(self, session_id: str) -> bool:
        return await self._transition(
            session_id,
            SessionStatus.VERIFIED,
            verifiedAt=self._clock(),
        )

    async def _transition(self, session_id: str, status: SessionStatus, **extra) -> bool:
        fields = {"status": status.value, "lastActivityAt": self._clock()}
        fields.update(extra)
        try:
            await self.store.conditional_update(
                SESSIONS,
                session_id,
                set_fields=fields,
                expected={"status": OPEN_STATUSES},
            )
        except ConditionFailedError:
            logger.warning(
                "Session transition rejected",
                session_id=session_id,
                target=status.value,
            )
            return False
        return True
