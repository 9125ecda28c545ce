import asyncio
import json

from pydantic import ValidationError

from lark_relay.logging_config import RowLogger, get_logger
from lark_relay.schemas.queue import Attachment, InboundRow
from lark_relay.services.consumer_loop import PollingConsumer
from lark_relay.services.gateway_client import ProcessingBackend
from lark_relay.services.queue_service import MessageQueue
from lark_relay.services.result import Result

logger = get_logger("inbound_consumer")

DELIVERED_MARKER = "delivered"


def decode_attachments(raw: str | None) -> Result[list[Attachment]]:
    """Parse the stored attachments column, telling an empty column apart from a broken one."""
    if not raw:
        return Result.absent()
    try:
        items = json.loads(raw)
    except ValueError as exc:
        return Result.malformed(f"invalid json: {exc}")
    if not isinstance(items, list):
        return Result.malformed(f"expected list, got {type(items).__name__}")
    try:
        return Result.success([Attachment.model_validate(item) for item in items])
    except ValidationError as exc:
        return Result.malformed(f"invalid attachment: {exc.error_count()} error(s)")


class InboundConsumer(PollingConsumer):
    """Forwards queued Lark messages to the gateway, one small batch per sweep."""

    name = "inbound"

    def __init__(
        self,
        queue: MessageQueue,
        backend: ProcessingBackend,
        *,
        batch_size: int = 3,
        backend_timeout_seconds: float = 300.0,
        poll_interval_seconds: float = 0.5,
    ):
        super().__init__(poll_interval_seconds=poll_interval_seconds)
        self.queue = queue
        self.backend = backend
        self.batch_size = batch_size
        self.backend_timeout_seconds = backend_timeout_seconds

    async def process_batch(self) -> int:
        rows = self.queue.dequeue_inbound(self.batch_size)
        for row in rows:
            if self.stopping:
                break
            try:
                await self.process_row(row)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # store errors on one row must not stall the rest of the batch
                logger.error(
                    "Inbound row failed",
                    extra={"context": {"inbound_id": row.id, "error": str(exc)}},
                    exc_info=True,
                )
        return len(rows)

    async def process_row(self, row: InboundRow) -> None:
        row_logger = RowLogger(logger, "inbound_queue", row.id, message_id=row.message_id)
        self.queue.mark_inbound_processing(row.id)
        row_logger.info("Processing inbound", context={"attempt": row.retries + 1})

        try:
            decoded = decode_attachments(row.attachments_json)
            if decoded.is_malformed:
                row_logger.warning("Dropping malformed attachments", context={"error": decoded.error})
            attachments = decoded.unwrap_or([])

            await asyncio.wait_for(
                self.backend.submit(
                    text=row.message_text,
                    attachments=attachments,
                    session_key=row.session_key,
                    chat_id=row.chat_id,
                    idempotency_key=f"inbound-{row.message_id}",
                ),
                timeout=self.backend_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            row_logger.error("Gateway timed out", context={"timeout_seconds": self.backend_timeout_seconds})
            self.queue.mark_inbound_retry(row.id, f"Gateway timeout after {self.backend_timeout_seconds}s")
            return
        except Exception as exc:
            row_logger.error("Inbound delivery failed", context={"error": str(exc)})
            self.queue.mark_inbound_retry(row.id, str(exc) or type(exc).__name__)
            return

        self.queue.mark_inbound_completed(row.id, DELIVERED_MARKER)
