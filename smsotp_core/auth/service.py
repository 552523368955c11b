"""
Authentication Orchestrator
===========================
Four-step phone OTP protocol:

    1. validate_identity  static app credentials + phone -> session
    2. request_otp        rate limits, phone binding -> OTP via SMS queue
    3. verify_otp         attempt accounting, locking -> auth token
    4. ingest_delivery_status   provider callbacks -> delivery metadata

Every failure raises a typed AuthFlowError. Store and queue failures are
logged and collapsed into InternalError so storage details never reach the
caller. Audit writes are best effort and never abort a step.
"""

import functools
import time
from typing import Callable, Optional

import structlog

from ..audit import AuditEventType, AuditTrail
from ..config import AuthConfig
from ..crypto import (
    AuthTokenIssuer,
    constant_time_equal,
    is_otp_format,
    mask_phone,
    validate_phone_number,
)
from ..errors import (
    AuthFlowError,
    DebugAccessError,
    FailureReason,
    InputError,
    InternalError,
    InvalidCredentialsError,
    RateLimitExceeded,
    SecurityViolation,
    ValidationFailure,
)
from ..metrics import (
    DELIVERY_STATUS_UPDATES,
    IDENTITY_REJECTED,
    OTP_VERIFICATIONS,
    OTPS_ISSUED,
    RATE_LIMIT_REJECTIONS,
    SESSIONS_CREATED,
    SESSIONS_LOCKED,
)
from ..otp import DebugOTPReadback, OTPManager
from ..queue import MessageQueue, QueueError
from ..rate_limit import FixedWindowRateLimiter, RateLimitInfo, RateLimitKind
from ..session import Session, SessionManager
from ..storage import ConditionFailedError, KeyValueStore, StoreError
from .context import RequestContext
from .models import DebugOTP, IdentityValidated, OTPRequested, OTPVerified

logger = structlog.get_logger(__name__)

LOCK_REASON_PHONE_MISMATCH = "Phone number mismatch - possible fraud"
LOCK_REASON_MAX_ATTEMPTS = "Maximum OTP verification attempts exceeded"

FAILURE_MESSAGES = {
    FailureReason.SESSION_NOT_FOUND: "Session not found",
    FailureReason.SESSION_EXPIRED: "Session expired",
    FailureReason.SESSION_LOCKED: "Session is locked",
    FailureReason.SESSION_ALREADY_VERIFIED: "Session already verified",
    FailureReason.NO_OTP_FOUND: "No OTP found. Please request a new one.",
    FailureReason.OTP_EXPIRED: "OTP has expired. Please request a new one.",
    FailureReason.OTP_ALREADY_USED: "OTP has already been used",
    FailureReason.INVALID_OTP: "Invalid OTP.",
}

# Compared against when an app id is unknown, so both paths do the same work
_UNKNOWN_APP_SECRET = "unknown-app-placeholder-secret"


def _guard_collaborators(operation):
    """Turn store and queue failures into a generic InternalError."""

    @functools.wraps(operation)
    async def wrapper(self, *args, **kwargs):
        try:
            return await operation(self, *args, **kwargs)
        except AuthFlowError:
            raise
        except (StoreError, QueueError, ConditionFailedError) as e:
            logger.exception(
                "Collaborator failure",
                operation=operation.__name__,
                error_type=type(e).__name__,
            )
            raise InternalError() from e

    return wrapper


class AuthenticationService:
    """
    Composes session, OTP, rate limit and audit components into the
    authentication protocol.

    All state lives in the store; one instance can serve any number of
    concurrent requests.
    """

    def __init__(
        self,
        config: AuthConfig,
        store: KeyValueStore,
        queue: MessageQueue,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config.validate()
        self.store = store
        self.queue = queue
        self._clock = clock

        self.sessions = SessionManager(store, config, clock)
        self.otps = OTPManager(store, config, clock)
        self.rate_limiter = FixedWindowRateLimiter(store, clock)
        self.audit = AuditTrail(store, config, clock)
        self.tokens = AuthTokenIssuer(
            config.auth_token_secret,
            ttl_seconds=config.auth_token_ttl_seconds,
            clock=clock,
        )
        self.debug: Optional[DebugOTPReadback] = (
            DebugOTPReadback(store, config, clock) if config.debug_otp_readback else None
        )

    # ------------------------------------------------------------------
    # Step 1: identity validation
    # ------------------------------------------------------------------

    @_guard_collaborators
    async def validate_identity(
        self,
        app_id: Optional[str],
        secret: Optional[str],
        phone_number: Optional[str],
        client_session_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> IdentityValidated:
        """
        Check static app credentials and mint a session for a phone number.

        Raises:
            InputError: Missing fields or malformed phone number
            RateLimitExceeded: Too many identity attempts from this IP
            InvalidCredentialsError: Unknown app or wrong secret
        """
        ctx = ctx or RequestContext()

        if not app_id or not secret or not phone_number:
            raise InputError(
                FailureReason.MISSING_FIELDS,
                "Missing required fields: appId, secret, phoneNumber",
            )
        if not validate_phone_number(phone_number):
            raise InputError(
                FailureReason.INVALID_PHONE_NUMBER,
                "Invalid phone number format. Must be E.164 format (e.g., +1234567890)",
            )

        if self.config.rate_limit_identity_ip_max > 0 and ctx.source_ip:
            info = await self.rate_limiter.check_and_increment(
                ctx.source_ip,
                RateLimitKind.IDENTITY_IP,
                self.config.rate_limit_identity_ip_max,
                self.config.rate_limit_window_seconds,
            )
            if not info.allowed:
                await self._reject_rate_limited(
                    info, RateLimitKind.IDENTITY_IP, ctx,
                    phone_number=phone_number, app_id=app_id,
                )

        expected_secret = self.config.app_credentials.get(app_id)
        secret_ok = constant_time_equal(secret, expected_secret or _UNKNOWN_APP_SECRET)
        if expected_secret is None or not secret_ok:
            IDENTITY_REJECTED.inc()
            logger.warning("Invalid QR credentials", app_id=app_id, request_id=ctx.request_id)
            await self.audit.record(
                AuditEventType.QR_VALIDATED,
                success=False,
                message="Invalid QR code credentials",
                phone_number=phone_number,
                app_id=app_id,
                ip_address=ctx.source_ip,
                user_agent=ctx.user_agent,
                request_id=ctx.request_id,
            )
            raise InvalidCredentialsError(FailureReason.INVALID_CREDENTIALS)

        session = await self.sessions.create(phone_number, app_id, client_session_id)
        SESSIONS_CREATED.labels(app_id=app_id).inc()

        await self.audit.record(
            AuditEventType.QR_VALIDATED,
            success=True,
            message="QR code validated, session created",
            session_id=session.session_id,
            phone_number=phone_number,
            app_id=app_id,
            ip_address=ctx.source_ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
        )
        return IdentityValidated(session_id=session.session_id, expires_at=session.expiry_at)

    # ------------------------------------------------------------------
    # Step 2: OTP request
    # ------------------------------------------------------------------

    @_guard_collaborators
    async def request_otp(
        self,
        session_id: Optional[str],
        phone_number: Optional[str],
        ctx: Optional[RequestContext] = None,
    ) -> OTPRequested:
        """
        Issue an OTP for a session and queue it for SMS delivery.

        Phone binding is checked first: a different number for an open
        session locks it, whatever the rate limiters would say.

        Raises:
            InputError: Missing fields or malformed phone number
            ValidationFailure: Session not usable
            SecurityViolation: Phone number mismatch (session locked)
            RateLimitExceeded: Phone or IP limit reached (nothing issued)
        """
        ctx = ctx or RequestContext()

        if not session_id or not phone_number:
            raise InputError(
                FailureReason.MISSING_FIELDS,
                "Missing required fields: sessionId, phoneNumber",
            )
        if not validate_phone_number(phone_number):
            raise InputError(
                FailureReason.INVALID_PHONE_NUMBER,
                "Invalid phone number format. Must be E.164 format (e.g., +1234567890)",
            )

        session = await self._require_session(session_id)

        # Binding before rate limits: a mismatch locks the session even when
        # the caller is also over a limit.
        if not self.sessions.validate_phone_binding(session, phone_number):
            await self.sessions.lock(session_id, LOCK_REASON_PHONE_MISMATCH)
            SESSIONS_LOCKED.labels(reason=FailureReason.PHONE_MISMATCH.value).inc()
            logger.warning(
                "Phone number mismatch, session locked",
                session_id=session_id,
                session_phone=mask_phone(session.phone_number),
                provided_phone=mask_phone(phone_number),
            )
            await self.audit.record(
                AuditEventType.FRAUD_DETECTED,
                success=False,
                message="Phone number mismatch. Session locked.",
                session_id=session_id,
                phone_number=session.phone_number,
                app_id=session.app_id,
                ip_address=ctx.source_ip,
                user_agent=ctx.user_agent,
                request_id=ctx.request_id,
                details={"providedPhoneNumber": phone_number},
            )
            raise SecurityViolation(
                FailureReason.PHONE_MISMATCH,
                "Phone number mismatch. Session locked.",
            )

        phone_limit = await self.rate_limiter.check_and_increment(
            phone_number,
            RateLimitKind.PHONE,
            self.config.rate_limit_phone_max,
            self.config.rate_limit_window_seconds,
        )
        if not phone_limit.allowed:
            await self._reject_rate_limited(phone_limit, RateLimitKind.PHONE, ctx, session=session)

        if ctx.source_ip:
            ip_limit = await self.rate_limiter.check_and_increment(
                ctx.source_ip,
                RateLimitKind.IP,
                self.config.rate_limit_ip_max,
                self.config.rate_limit_window_seconds,
            )
            if not ip_limit.allowed:
                await self._reject_rate_limited(ip_limit, RateLimitKind.IP, ctx, session=session)

        issued = await self.otps.issue(session_id)

        if not await self.sessions.mark_otp_generated(session_id):
            # Session went terminal between validation and issuance
            await self._require_session(session_id)
            raise ValidationFailure(FailureReason.SESSION_LOCKED, FAILURE_MESSAGES[FailureReason.SESSION_LOCKED])

        await self.queue.enqueue({
            "phoneNumber": session.phone_number,
            "otp": issued.otp,
            "sessionId": session_id,
            "otpId": issued.otp_id,
        })

        if self.debug is not None:
            await self.debug.remember(
                session_id,
                issued.otp,
                issued.otp_id,
                session.phone_number,
                issued.expires_at,
            )

        OTPS_ISSUED.inc()
        logger.info(
            "OTP queued for delivery",
            session_id=session_id,
            otp_id=issued.otp_id,
            phone=mask_phone(session.phone_number),
            request_id=ctx.request_id,
        )
        await self.audit.record(
            AuditEventType.OTP_REQUESTED,
            success=True,
            message="OTP generated and queued for SMS delivery",
            session_id=session_id,
            phone_number=session.phone_number,
            app_id=session.app_id,
            ip_address=ctx.source_ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
            details={"otpId": issued.otp_id},
        )
        return OTPRequested(
            session_id=session_id,
            otp_id=issued.otp_id,
            expires_at=issued.expires_at,
        )

    # ------------------------------------------------------------------
    # Step 3: OTP verification
    # ------------------------------------------------------------------

    @_guard_collaborators
    async def verify_otp(
        self,
        session_id: Optional[str],
        otp: Optional[str],
        ctx: Optional[RequestContext] = None,
    ) -> OTPVerified:
        """
        Verify an OTP and issue an auth token.

        Every failed verification counts as an attempt. The attempt that
        reaches the maximum locks the session in the same call.

        Raises:
            InputError: Missing fields or OTP not six digits
            ValidationFailure: Session not usable, or OTP rejected
            SecurityViolation: Attempts exhausted (session locked)
        """
        ctx = ctx or RequestContext()

        if not session_id or not otp:
            raise InputError(FailureReason.MISSING_FIELDS, "Missing required fields: sessionId, otp")
        if not is_otp_format(otp):
            raise InputError(FailureReason.INVALID_OTP_FORMAT, "Invalid OTP format. Must be 6 digits")

        session = await self._require_session(session_id)

        if self.sessions.is_max_attempts_exceeded(session.attempts):
            await self._lock_for_attempts(session, session.attempts, ctx)

        result = await self.otps.verify(session_id, otp)

        if not result.valid:
            attempts = await self.sessions.increment_attempts(session_id)
            OTP_VERIFICATIONS.labels(outcome=result.reason.value).inc()
            logger.warning(
                "OTP verification failed",
                session_id=session_id,
                reason=result.reason.value,
                attempts=attempts,
            )
            await self.audit.record(
                AuditEventType.OTP_VERIFIED_FAILED,
                success=False,
                message=f"Verification failed: {result.reason.value}",
                session_id=session_id,
                phone_number=session.phone_number,
                app_id=session.app_id,
                ip_address=ctx.source_ip,
                user_agent=ctx.user_agent,
                request_id=ctx.request_id,
                details={"reason": result.reason.value, "attempts": attempts},
            )

            if self.sessions.is_max_attempts_exceeded(attempts):
                await self._lock_for_attempts(session, attempts, ctx)

            remaining = self.sessions.remaining_attempts(attempts)
            raise ValidationFailure(
                result.reason,
                f"{FAILURE_MESSAGES[result.reason]} {remaining} attempts remaining.",
                details={"remainingAttempts": remaining},
            )

        if not await self.sessions.mark_verified(session_id):
            # Locked or expired concurrently; report the current state
            await self._require_session(session_id)
            raise ValidationFailure(
                FailureReason.SESSION_LOCKED,
                FAILURE_MESSAGES[FailureReason.SESSION_LOCKED],
            )

        verified_at = self._clock()
        auth_token = self.tokens.issue(session_id, session.phone_number, session.app_id)
        OTP_VERIFICATIONS.labels(outcome="SUCCESS").inc()

        logger.info("OTP verified, session authenticated", session_id=session_id)
        await self.audit.record(
            AuditEventType.OTP_VERIFIED_SUCCESS,
            success=True,
            message="OTP verified successfully",
            session_id=session_id,
            phone_number=session.phone_number,
            app_id=session.app_id,
            ip_address=ctx.source_ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
            details={"otpId": result.otp_id},
        )
        return OTPVerified(
            session_id=session_id,
            auth_token=auth_token,
            phone_number=session.phone_number,
            verified_at=verified_at,
        )

    # ------------------------------------------------------------------
    # Step 4: delivery status ingestion
    # ------------------------------------------------------------------

    @_guard_collaborators
    async def ingest_delivery_status(
        self,
        provider_message_id: Optional[str],
        status: Optional[str],
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> bool:
        """
        Record a provider delivery status on the matching OTP record.

        Never changes session or OTP validity.

        Returns:
            False if no OTP record carries this message id
        """
        ctx = ctx or RequestContext()

        if not provider_message_id or not status:
            raise InputError(FailureReason.MISSING_FIELDS, "Missing required fields: MessageSid, MessageStatus")

        status = status.lower()
        record = await self.otps.record_delivery_status(
            provider_message_id, status, error_code, error_message
        )
        if record is None:
            return False

        DELIVERY_STATUS_UPDATES.labels(status=status).inc()
        session = await self.sessions.get(record.session_id)
        await self.audit.record(
            AuditEventType.SMS_DELIVERY_STATUS,
            success=status not in ("failed", "undelivered"),
            message=f"SMS delivery status: {status}",
            session_id=record.session_id,
            phone_number=session.phone_number if session else None,
            app_id=session.app_id if session else None,
            ip_address=ctx.source_ip,
            request_id=ctx.request_id,
            details={
                "otpId": record.otp_id,
                "providerMessageId": provider_message_id,
                "status": status,
                "errorCode": error_code,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Demo read-back
    # ------------------------------------------------------------------

    @_guard_collaborators
    async def get_debug_otp(
        self,
        session_id: Optional[str],
        access_token: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> DebugOTP:
        """
        Read back the plaintext OTP of a session (demo only).

        Raises:
            DebugAccessError: Read-back disabled or wrong access token
            InputError: Missing session id
            ValidationFailure: No OTP copy for this session
        """
        ctx = ctx or RequestContext()

        if self.debug is None:
            raise DebugAccessError(FailureReason.DEBUG_DISABLED)
        if self.config.debug_access_token and not constant_time_equal(
            access_token or "", self.config.debug_access_token
        ):
            logger.warning("Debug OTP read-back refused", request_id=ctx.request_id)
            raise DebugAccessError(FailureReason.DEBUG_FORBIDDEN, "Debug access token required")
        if not session_id:
            raise InputError(FailureReason.MISSING_FIELDS, "Missing required parameter: sessionId")

        item = await self.debug.read(session_id)
        if item is None:
            raise ValidationFailure(
                FailureReason.DEBUG_OTP_NOT_FOUND,
                "Demo OTP not available for this session",
            )

        logger.info("Debug OTP read back", session_id=session_id, request_id=ctx.request_id)
        return DebugOTP(
            session_id=session_id,
            otp=item["otp"],
            phone_number=item["phoneNumber"],
            expires_at=item["expiresAt"],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_session(self, session_id: str) -> Session:
        validation = await self.sessions.validate(session_id)
        if not validation.valid:
            raise ValidationFailure(validation.reason, FAILURE_MESSAGES[validation.reason])
        return validation.session

    async def _lock_for_attempts(self, session: Session, attempts: int, ctx: RequestContext) -> None:
        """Lock a session whose attempts are exhausted, then raise."""
        if await self.sessions.lock(session.session_id, LOCK_REASON_MAX_ATTEMPTS):
            SESSIONS_LOCKED.labels(reason=FailureReason.MAX_ATTEMPTS_EXCEEDED.value).inc()
        await self.audit.record(
            AuditEventType.SESSION_LOCKED,
            success=False,
            message=f"Max attempts ({self.sessions.max_attempts}) exceeded",
            session_id=session.session_id,
            phone_number=session.phone_number,
            app_id=session.app_id,
            ip_address=ctx.source_ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
            details={"attempts": attempts},
        )
        raise SecurityViolation(
            FailureReason.MAX_ATTEMPTS_EXCEEDED,
            "Maximum verification attempts exceeded. Session locked.",
        )

    async def _reject_rate_limited(
        self,
        info: RateLimitInfo,
        kind: RateLimitKind,
        ctx: RequestContext,
        session: Optional[Session] = None,
        phone_number: Optional[str] = None,
        app_id: Optional[str] = None,
    ) -> None:
        """Audit a rate limit rejection, then raise."""
        RATE_LIMIT_REJECTIONS.labels(kind=kind.value).inc()
        await self.audit.record(
            AuditEventType.RATE_LIMIT_EXCEEDED,
            success=False,
            message=f"Rate limit exceeded ({kind.value})",
            session_id=session.session_id if session else None,
            phone_number=session.phone_number if session else phone_number,
            app_id=session.app_id if session else app_id,
            ip_address=ctx.source_ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
            details={"kind": kind.value, "limit": info.limit, "resetAt": info.reset_at},
        )
        raise RateLimitExceeded(
            reset_at=info.reset_at,
            retry_after=info.retry_after or 1,
            kind=kind.value,
        )
