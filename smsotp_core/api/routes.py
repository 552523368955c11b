"""
Authentication Routes
=====================
HTTP endpoints of the OTP authentication protocol.
"""

from typing import Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
import structlog

from ..auth import AuthenticationService, RequestContext
from ..config import AuthConfig
from ..delivery import SMSProvider
from ..errors import FailureReason, InputError
from .middleware import get_request_context
from .responses import error_response, success_response
from .schemas import RequestOTPRequest, ValidateQRRequest, VerifyOTPRequest

logger = structlog.get_logger(__name__)


def create_auth_router(service: AuthenticationService) -> APIRouter:
    """Router with the three protocol steps."""
    router = APIRouter(tags=["Authentication"])

    @router.post("/validate-qr")
    async def validate_qr(
        body: ValidateQRRequest,
        ctx: RequestContext = Depends(get_request_context),
    ) -> JSONResponse:
        result = await service.validate_identity(
            body.appId,
            body.secret,
            body.phoneNumber,
            client_session_id=body.clientSessionId,
            ctx=ctx,
        )
        return success_response(
            {"sessionId": result.session_id, "expiresAt": result.expires_at},
            "QR code validated successfully",
        )

    @router.post("/request-otp")
    async def request_otp(
        body: RequestOTPRequest,
        ctx: RequestContext = Depends(get_request_context),
    ) -> JSONResponse:
        result = await service.request_otp(body.sessionId, body.phoneNumber, ctx=ctx)
        return success_response(
            {"sessionId": result.session_id, "expiresAt": result.expires_at},
            "OTP sent to your phone number",
        )

    @router.post("/verify-otp")
    async def verify_otp(
        body: VerifyOTPRequest,
        ctx: RequestContext = Depends(get_request_context),
    ) -> JSONResponse:
        result = await service.verify_otp(body.sessionId, body.otp, ctx=ctx)
        return success_response(
            {
                "sessionId": result.session_id,
                "authToken": result.auth_token,
                "phoneNumber": result.phone_number,
                "verifiedAt": result.verified_at,
            },
            "OTP verified successfully",
        )

    return router


def create_webhook_router(
    service: AuthenticationService,
    provider: SMSProvider,
    config: AuthConfig,
) -> APIRouter:
    """Router for provider delivery status callbacks."""
    router = APIRouter(tags=["Webhooks"])

    @router.post("/webhooks/sms-status")
    async def sms_status(
        request: Request,
        ctx: RequestContext = Depends(get_request_context),
    ) -> JSONResponse:
        raw = (await request.body()).decode("utf-8", errors="replace")
        params = dict(parse_qsl(raw, keep_blank_values=True))

        if config.validate_webhook_signatures:
            # Signed against the public URL, which the gateway passes along
            url = request.headers.get("X-Original-URL") or str(request.url)
            signature = request.headers.get(provider.signature_header)
            if not provider.verify_callback(url, params, signature):
                logger.warning("Webhook signature rejected", provider=provider.name)
                return error_response(
                    403,
                    FailureReason.INVALID_SIGNATURE.value,
                    "Invalid webhook signature",
                )

        report = provider.parse_callback(params)
        if not report.provider_message_id:
            raise InputError(FailureReason.MISSING_FIELDS, "Missing required field: MessageSid")
        if report.delivery_status is None:
            logger.info(
                "Untracked delivery status ignored",
                provider_message_id=report.provider_message_id,
                provider_status=report.provider_status,
            )
            return success_response({"updated": False}, "Delivery status received")

        updated = await service.ingest_delivery_status(
            report.provider_message_id,
            report.delivery_status.value,
            error_code=report.error_code,
            error_message=report.error_message,
            ctx=ctx,
        )
        return success_response({"updated": updated}, "Delivery status received")

    return router


def create_debug_router(service: AuthenticationService) -> APIRouter:
    """Demo-only router for reading back plaintext OTPs."""
    router = APIRouter(tags=["Debug"])

    @router.get("/get-otp")
    async def get_otp(
        session_id: Optional[str] = Query(None, alias="sessionId"),
        debug_token: Optional[str] = Header(None, alias="X-Debug-Token"),
        ctx: RequestContext = Depends(get_request_context),
    ) -> JSONResponse:
        result = await service.get_debug_otp(session_id, access_token=debug_token, ctx=ctx)
        return success_response(
            {
                "sessionId": result.session_id,
                "otp": result.otp,
                "phoneNumber": result.phone_number,
                "expiresAt": result.expires_at,
            },
            "OTP retrieved successfully (demo mode).",
        )

    return router
