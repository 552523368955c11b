"""
Worker Entry Point
==================
Console entry point for the SMS delivery worker (smsotp-worker).
"""

import asyncio
import signal

import structlog

from ..config import AuthConfig
from ..logging_setup import configure_logging
from ..otp import OTPManager
from ..queue import RedisQueue
from ..storage import RedisStore
from .twilio import TwilioSMSProvider
from .worker import SMSDeliveryWorker

logger = structlog.get_logger(__name__)


async def run_worker(config: AuthConfig) -> None:
    store = RedisStore.from_url(
        config.redis_url,
        key_prefix=config.key_prefix,
        timeout=config.store_timeout_seconds,
    )
    queue = RedisQueue.from_url(
        config.redis_url,
        queue_key=config.sms_queue_key,
        max_receives=config.queue_max_receives,
        visibility_timeout=config.queue_visibility_timeout_seconds,
        timeout=config.store_timeout_seconds,
    )
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        async with TwilioSMSProvider.from_config(config) as provider:
            worker = SMSDeliveryWorker(queue, provider, OTPManager(store, config), config)
            await worker.run(stop_event)
    finally:
        await queue.close()
        await store.close()


def main() -> None:
    config = AuthConfig.from_env()
    configure_logging(
        service_name=f"{config.service_name}-worker",
        level=config.log_level,
        json_output=config.log_json,
    )
    asyncio.run(run_worker(config))


if __name__ == "__main__":
    main()
