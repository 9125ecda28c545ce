"""Delivers queued replies to Lark.

Two retry layers are in play. Each queue attempt runs send_with_retry, which
retries the Lark API call in-process with backoff; only when that gives up
does the row go back to the queue with its own (longer) backoff.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from lark_relay.logging_config import RowLogger, get_logger
from lark_relay.schemas.queue import OutboundRow
from lark_relay.services.card_builder import MessageType, build_card, select_message_type
from lark_relay.services.consumer_loop import PollingConsumer
from lark_relay.services.errors import (
    ExhaustedRetries,
    PermanentRejection,
    TransientIOError,
    is_non_retryable,
)
from lark_relay.services.lark_client import LarkClient, SendResult
from lark_relay.services.queue_service import MessageQueue
from lark_relay.services.retry_policy import SEND_MAX_RETRIES, backoff_ms, format_delay

logger = get_logger("outbound_sender")


@dataclass
class SendOutcome:
    skipped: bool = False
    message_id: Optional[str] = None
    attempts: int = 0


class OutboundSender(PollingConsumer):
    name = "outbound"

    def __init__(
        self,
        queue: MessageQueue,
        client: LarkClient,
        *,
        batch_size: int = 5,
        poll_interval_seconds: float = 0.5,
        max_send_attempts: int = SEND_MAX_RETRIES,
    ):
        super().__init__(poll_interval_seconds=poll_interval_seconds)
        self.queue = queue
        self.client = client
        self.batch_size = batch_size
        self.max_send_attempts = max_send_attempts

    async def process_batch(self) -> int:
        rows = self.queue.dequeue_outbound(self.batch_size)
        for row in rows:
            if self.stopping:
                break
            try:
                await self.process_row(row)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "Outbound row failed",
                    extra={"context": {"outbound_id": row.id, "error": str(exc)}},
                    exc_info=True,
                )
        return len(rows)

    async def process_row(self, row: OutboundRow) -> None:
        row_logger = RowLogger(logger, "outbound_queue", row.id, queue_type=row.queue_type)
        self.queue.mark_outbound_processing(row.id)
        row_logger.info("Processing outbound", context={"attempt": row.retries + 1, "chat_id": row.chat_id})

        try:
            outcome = await self.send_with_retry(row.chat_id, row.content, row.session_key)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            row_logger.error("Outbound delivery failed", context={"error": str(exc)})
            self.queue.mark_outbound_retry(row.id, str(exc) or type(exc).__name__)
            return

        self.queue.mark_outbound_completed(row.id, outcome.message_id)

    async def send_with_retry(
        self,
        chat_id: str,
        content: str,
        session_key: Optional[str] = None,
    ) -> SendOutcome:
        """Send content to a chat, retrying transport failures with backoff.

        Raises PermanentRejection for non-retryable Lark codes, ExhaustedRetries
        when every attempt failed, TransientIOError when stopped mid-backoff.
        """
        message_type = select_message_type(content)
        if message_type == MessageType.SKIP:
            return SendOutcome(skipped=True)

        last_error: Optional[str] = None
        for attempt in range(1, self.max_send_attempts + 1):
            try:
                result = await self._send_once(message_type, chat_id, content, session_key)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                result = SendResult(success=False, error=str(exc) or type(exc).__name__)

            if result.success:
                logger.info(
                    "Lark message sent",
                    extra={"context": {"type": message_type.value, "message_id": result.message_id, "attempt": attempt}},
                )
                return SendOutcome(message_id=result.message_id, attempts=attempt)

            last_error = result.error or "Unknown error"
            if is_non_retryable(result.code):
                logger.error(
                    "Lark rejected message permanently",
                    extra={"context": {"chat_id": chat_id, "code": result.code, "error": last_error}},
                )
                raise PermanentRejection(result.code, last_error)

            logger.warning(
                "Lark send attempt failed",
                extra={
                    "context": {
                        "attempt": attempt,
                        "max_attempts": self.max_send_attempts,
                        "code": result.code,
                        "error": last_error,
                    }
                },
            )

            if attempt < self.max_send_attempts:
                delay_ms = backoff_ms(attempt)
                logger.info("Lark send retry scheduled", extra={"context": {"retry_in": format_delay(delay_ms)}})
                if not await self.sleep(delay_ms / 1000):
                    raise TransientIOError(f"sender stopped: {last_error}")

        raise ExhaustedRetries(self.max_send_attempts, last_error)

    async def _send_once(
        self,
        message_type: MessageType,
        chat_id: str,
        content: str,
        session_key: Optional[str],
    ) -> SendResult:
        if message_type == MessageType.TEXT:
            return await self.client.send_text(chat_id, content)
        return await self.client.send_card(chat_id, build_card(content, session_key=session_key))
