import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from lark_relay.config import Settings
from lark_relay.config import settings as default_settings
from lark_relay.logging_config import get_logger, setup_logging
from lark_relay.routers import health, lark_webhook, outbound
from lark_relay.services.event_parser import LarkEventIngestor
from lark_relay.services.gateway_client import GatewayClient
from lark_relay.services.inbound_consumer import InboundConsumer
from lark_relay.services.lark_client import LarkClient
from lark_relay.services.outbound_sender import OutboundSender
from lark_relay.services.queue_registry import QueueRegistry
from lark_relay.services.queue_service import MessageQueue

logger = get_logger("main")


def _is_consumers_enabled(app_settings: Settings) -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return app_settings.consumers_enabled


async def _maintenance_loop(queue: MessageQueue, interval_seconds: float) -> None:
    interval_seconds = max(interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            report = queue.run_maintenance()
            logger.info("Queue maintenance finished", extra={"context": report.model_dump()})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error(
                "Queue maintenance failed",
                extra={"context": {"error": str(exc)}},
                exc_info=True,
            )


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry = QueueRegistry(app_settings.resolved_queue_db_path, media_dir=app_settings.resolved_media_dir)
        queue = registry.get()

        if not app_settings.lark_configured:
            logger.warning("Lark credentials missing, outbound delivery will keep retrying")
        lark_client = LarkClient(app_settings.lark_app_id, app_settings.lark_app_secret, domain=app_settings.lark_domain)
        gateway_client = GatewayClient(
            app_settings.gateway_url,
            token=app_settings.gateway_token,
            agent_id=app_settings.agent_id,
            timeout=app_settings.backend_timeout_seconds,
        )

        inbound_consumer = InboundConsumer(
            queue,
            gateway_client,
            batch_size=app_settings.inbound_batch_size,
            backend_timeout_seconds=app_settings.backend_timeout_seconds,
            poll_interval_seconds=app_settings.poll_interval_seconds,
        )
        outbound_sender = OutboundSender(
            queue,
            lark_client,
            batch_size=app_settings.outbound_batch_size,
            poll_interval_seconds=app_settings.poll_interval_seconds,
        )

        app.state.settings = app_settings
        app.state.registry = registry
        app.state.queue = queue
        app.state.inbound_consumer = inbound_consumer
        app.state.outbound_sender = outbound_sender
        app.state.ingestor = LarkEventIngestor(
            queue,
            lark_client,
            media_dir=app_settings.resolved_media_dir,
            dm_allowlist=app_settings.dm_allowlist_ids,
            group_allowlist=app_settings.group_allowlist_ids,
            group_require_mention=app_settings.group_require_mention,
            agent_id=app_settings.agent_id,
        )

        maintenance_task: Optional[asyncio.Task] = None
        if _is_consumers_enabled(app_settings):
            inbound_consumer.start()
            outbound_sender.start()
            maintenance_task = asyncio.create_task(
                _maintenance_loop(queue, app_settings.maintenance_interval_seconds)
            )
            logger.info("Consumers started", extra={"context": {"db_path": queue.path}})

        try:
            yield
        finally:
            await inbound_consumer.stop()
            await outbound_sender.stop()
            if maintenance_task is not None:
                maintenance_task.cancel()
                try:
                    await maintenance_task
                except asyncio.CancelledError:
                    pass
            await lark_client.aclose()
            await gateway_client.aclose()
            registry.close_all()
            logger.info("Lark relay stopped")

    setup_logging(app_settings.log_level)

    app = FastAPI(
        title="Lark Relay",
        description="Durable message relay between Lark and the agent gateway",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(lark_webhook.router)
    app.include_router(outbound.router)
    app.include_router(health.router)
    return app


app = create_app()
