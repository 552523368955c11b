"""
Application Factory
===================
Builds the FastAPI app for the OTP authentication service.

Collaborators (store, queue, SMS provider) are created once here, or
injected by the caller, and passed down. Nothing is held in module-level
globals.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.exceptions import RequestValidationError
import structlog

from .. import __version__
from ..auth import AuthenticationService
from ..config import AuthConfig
from ..delivery import SMSProvider, TwilioSMSProvider
from ..errors import AuthFlowError
from ..logging_setup import configure_logging
from ..metrics import CONTENT_TYPE_LATEST, export_metrics
from ..queue import MessageQueue, RedisQueue
from ..storage import KeyValueStore, RedisStore
from .health import create_health_router
from .middleware import RequestContextMiddleware
from .responses import (
    auth_flow_error_handler,
    unhandled_error_handler,
    validation_error_handler,
)
from .routes import create_auth_router, create_debug_router, create_webhook_router

logger = structlog.get_logger(__name__)


def create_app(
    config: Optional[AuthConfig] = None,
    store: Optional[KeyValueStore] = None,
    queue: Optional[MessageQueue] = None,
    service: Optional[AuthenticationService] = None,
    provider: Optional[SMSProvider] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Service configuration (default: from environment, which also
            configures logging)
        store: Keyed store (default: RedisStore at REDIS_URL)
        queue: SMS delivery queue (default: RedisQueue at REDIS_URL)
        service: Pre-built orchestrator (tests)
        provider: SMS provider used to check webhook signatures

    Returns:
        FastAPI application
    """
    if config is None:
        config = AuthConfig.from_env()
        configure_logging(
            service_name=config.service_name,
            level=config.log_level,
            json_output=config.log_json,
        )
    owned = []

    if store is None:
        store = RedisStore.from_url(
            config.redis_url,
            key_prefix=config.key_prefix,
            timeout=config.store_timeout_seconds,
        )
        owned.append(store)
    if queue is None:
        queue = RedisQueue.from_url(
            config.redis_url,
            queue_key=config.sms_queue_key,
            max_receives=config.queue_max_receives,
            visibility_timeout=config.queue_visibility_timeout_seconds,
            timeout=config.store_timeout_seconds,
        )
        owned.append(queue)
    if provider is None and config.twilio_account_sid:
        provider = TwilioSMSProvider.from_config(config)

    service = service or AuthenticationService(config, store, queue)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Service starting",
            environment=config.environment,
            debug_otp_readback=config.debug_otp_readback,
        )
        yield
        for resource in owned:
            await resource.close()
        logger.info("Service stopped")

    app = FastAPI(
        title="SMS OTP Authentication",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.service = service

    app.add_middleware(
        RequestContextMiddleware,
        trust_forwarded_for=config.trust_forwarded_for,
        trusted_proxies=config.trusted_proxies,
    )
    app.add_exception_handler(AuthFlowError, auth_flow_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(create_health_router(config.service_name, __version__, store, queue))
    app.include_router(create_auth_router(service))

    if provider is not None:
        app.include_router(create_webhook_router(service, provider, config))
    else:
        logger.warning("No SMS provider configured, delivery webhook disabled")

    if config.debug_otp_readback:
        logger.warning("Debug OTP read-back endpoint enabled")
        app.include_router(create_debug_router(service))

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=export_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app
