"""Persistent inbound/outbound message queue backed by a single SQLite file.

Inbound rows carry Lark messages to the gateway, outbound rows carry gateway
replies (and mirrored messages) back to Lark. Every row survives restarts; a
row only leaves the store through TTL cleanup after it completed.

dequeue_* does not claim rows. Callers mark them processing themselves, which
is only safe with one consumer per queue and store.
"""

import hashlib
import json
import time
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy import select, text
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.orm import Session

from lark_relay.database import create_session_factory, create_store_engine, init_schema
from lark_relay.logging_config import get_logger
from lark_relay.models import InboundMessage, OutboundMessage, SentRecord
from lark_relay.schemas.queue import (
    Attachment,
    EnqueueResult,
    InboundRow,
    MaintenanceReport,
    OutboundRow,
    QueueCounts,
    QueueStats,
    RetryDecision,
)
from lark_relay.services.message_status import (
    InvalidTransitionError,
    MessageStatus,
    transition,
)
from lark_relay.services.recovery_service import (
    cleanup_expired,
    cleanup_media_files,
    recover_stuck,
    reset_processing,
)
from lark_relay.services.retry_policy import (
    DEDUP_WINDOW_MS,
    MAX_RETRIES,
    MESSAGE_TTL_MS,
    backoff_ms,
    format_delay,
    is_exhausted,
)

logger = get_logger("queue_service")

QUEUE_TYPES = ("reply", "mirror")
MAX_ERROR_LENGTH = 2000


def _now_ms() -> int:
    return int(time.time() * 1000)


def hash_content(content: str) -> str:
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def serialize_attachments(attachments: Optional[list[Attachment]]) -> Optional[str]:
    if not attachments:
        return None
    return json.dumps([a.model_dump(by_alias=True, exclude_none=True) for a in attachments])


class MessageQueue:
    def __init__(
        self,
        db_path: Path | str,
        *,
        media_dir: Optional[Path] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.db_path = Path(db_path).expanduser()
        self.media_dir = Path(media_dir).expanduser() if media_dir else None
        self._clock = clock or _now_ms
        self._engine = create_store_engine(self.db_path)
        self._session_factory = create_session_factory(self._engine)

        init_schema(self._engine)
        with self._session() as db:
            reset_processing(db, now=self._clock())
        self.cleanup()

    def _session(self) -> Session:
        return self._session_factory()

    @property
    def path(self) -> str:
        return str(self.db_path)

    # Inbound (Lark -> gateway)

    def enqueue_inbound(
        self,
        message_id: str,
        chat_id: str,
        session_key: str,
        text: str,
        attachments: Optional[list[Attachment]] = None,
    ) -> EnqueueResult:
        """Persist an inbound message. Resubmitting the same message_id is a no-op."""
        now = self._clock()
        stmt = (
            insert(InboundMessage)
            .values(
                message_id=message_id,
                chat_id=chat_id,
                session_key=session_key,
                message_text=text,
                attachments_json=serialize_attachments(attachments),
                status=MessageStatus.PENDING.value,
                retries=0,
                next_retry_at=None,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["message_id"])
        )
        with self._session() as db:
            result = db.execute(stmt)
            db.commit()
            if result.rowcount and result.rowcount > 0:
                row_id = db.execute(
                    select(InboundMessage.id).where(InboundMessage.message_id == message_id)
                ).scalar_one()
                logger.info(
                    "Inbound enqueued",
                    extra={"context": {"id": row_id, "message_id": message_id, "chars": len(text)}},
                )
                return EnqueueResult(enqueued=True, id=row_id)

            existing = db.execute(
                select(InboundMessage.status).where(InboundMessage.message_id == message_id)
            ).scalar_one_or_none()

        logger.info(
            "Inbound duplicate ignored",
            extra={"context": {"message_id": message_id, "existing": existing}},
        )
        return EnqueueResult(enqueued=False, reason="duplicate", existing=existing)

    def dequeue_inbound(self, limit: int = 5) -> list[InboundRow]:
        with self._session() as db:
            rows = self._due_rows(db, InboundMessage, limit)
            return [InboundRow.model_validate(row, from_attributes=True) for row in rows]

    def mark_inbound_processing(self, row_id: int) -> bool:
        return self._mark_processing(InboundMessage, row_id)

    def mark_inbound_completed(self, row_id: int, response_text: Optional[str]) -> bool:
        with self._session() as db:
            row = self._transition_row(db, InboundMessage, row_id, MessageStatus.COMPLETED)
            if row is None:
                return False
            now = self._clock()
            row.completed_at = now
            row.updated_at = now
            row.next_retry_at = None
            row.last_error = None
            row.response_text = response_text
            db.commit()

        logger.info(
            "Inbound completed",
            extra={"context": {"id": row_id, "response_chars": len(response_text or "")}},
        )
        return True

    def mark_inbound_retry(self, row_id: int, error_message: str) -> Optional[RetryDecision]:
        return self._mark_retry(InboundMessage, row_id, error_message)

    # Outbound (gateway -> Lark)

    def enqueue_outbound(
        self,
        queue_type: str,
        session_key: str,
        chat_id: str,
        content: str,
        run_id: Optional[str] = None,
    ) -> EnqueueResult:
        """Queue a reply or mirror for delivery, suppressing duplicates inside the dedup window.

        The same reply can be resubmitted upstream both while it is still queued
        and after it was delivered, so both the queue and the sent ledger are
        checked.
        """
        if queue_type not in QUEUE_TYPES:
            raise ValueError(f"Unknown queue_type: {queue_type}")

        now = self._clock()
        content_hash = hash_content(content)
        dedup_cutoff = now - DEDUP_WINDOW_MS

        with self._session() as db:
            pending = db.execute(
                text(
                    """
                    SELECT id FROM outbound_queue
                    WHERE content_hash = :content_hash
                      AND chat_id = :chat_id
                      AND created_at > :cutoff
                      AND status IN ('pending', 'processing')
                    LIMIT 1
                    """
                ),
                {"content_hash": content_hash, "chat_id": chat_id, "cutoff": dedup_cutoff},
            ).first()
            if pending is not None:
                logger.info(
                    "Outbound duplicate pending",
                    extra={"context": {"existing_id": pending[0], "chat_id": chat_id}},
                )
                return EnqueueResult(enqueued=False, reason="duplicate_pending")

            sent = db.execute(
                text(
                    """
                    SELECT id FROM sent_messages
                    WHERE content_hash = :content_hash
                      AND chat_id = :chat_id
                      AND created_at > :cutoff
                    LIMIT 1
                    """
                ),
                {"content_hash": content_hash, "chat_id": chat_id, "cutoff": dedup_cutoff},
            ).first()
            if sent is not None:
                logger.info("Outbound already sent", extra={"context": {"chat_id": chat_id}})
                return EnqueueResult(enqueued=False, reason="already_sent")

            row = OutboundMessage(
                queue_type=queue_type,
                run_id=run_id or "",
                session_key=session_key,
                chat_id=chat_id,
                content=content,
                content_hash=content_hash,
                status=MessageStatus.PENDING.value,
                retries=0,
                next_retry_at=None,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.commit()
            row_id = row.id

        logger.info(
            "Outbound enqueued",
            extra={"context": {"id": row_id, "queue_type": queue_type, "chat_id": chat_id, "chars": len(content)}},
        )
        return EnqueueResult(enqueued=True, id=row_id)

    def dequeue_outbound(self, limit: int = 10) -> list[OutboundRow]:
        with self._session() as db:
            rows = self._due_rows(db, OutboundMessage, limit)
            return [OutboundRow.model_validate(row, from_attributes=True) for row in rows]

    def mark_outbound_processing(self, row_id: int) -> bool:
        return self._mark_processing(OutboundMessage, row_id)

    def mark_outbound_completed(self, row_id: int, lark_message_id: Optional[str]) -> bool:
        """Complete an outbound row and record the delivery in the sent ledger."""
        with self._session() as db:
            row = self._transition_row(db, OutboundMessage, row_id, MessageStatus.COMPLETED)
            if row is None:
                return False
            now = self._clock()
            row.completed_at = now
            row.updated_at = now
            row.next_retry_at = None
            row.last_error = None
            row.lark_message_id = lark_message_id
            db.add(
                SentRecord(
                    content_hash=row.content_hash,
                    chat_id=row.chat_id,
                    lark_message_id=lark_message_id,
                    created_at=now,
                )
            )
            db.commit()

        logger.info(
            "Outbound completed",
            extra={"context": {"id": row_id, "lark_message_id": lark_message_id}},
        )
        return True

    def mark_outbound_retry(self, row_id: int, error_message: str) -> Optional[RetryDecision]:
        return self._mark_retry(OutboundMessage, row_id, error_message)

    # Shared transitions

    def _due_rows(self, db: Session, model, limit: int) -> list:
        now = self._clock()
        stmt = (
            select(model)
            .where(model.status == MessageStatus.PENDING.value)
            .where((model.next_retry_at.is_(None)) | (model.next_retry_at <= now))
            .order_by(model.created_at.asc(), model.id.asc())
            .limit(limit)
        )
        return list(db.execute(stmt).scalars().all())

    def _transition_row(self, db: Session, model, row_id: int, to_status: MessageStatus):
        row = db.get(model, row_id)
        if row is None:
            logger.warning(
                "Queue row not found",
                extra={"context": {"table": model.__tablename__, "id": row_id}},
            )
            return None
        try:
            row.status = transition(MessageStatus(row.status), to_status).value
        except InvalidTransitionError as exc:
            logger.warning(
                "Ignored transition on finished row",
                extra={"context": {"table": model.__tablename__, "id": row_id, "error": str(exc)}},
            )
            return None
        return row

    def _mark_processing(self, model, row_id: int) -> bool:
        with self._session() as db:
            row = self._transition_row(db, model, row_id, MessageStatus.PROCESSING)
            if row is None:
                return False
            row.updated_at = self._clock()
            db.commit()
        return True

    def _mark_retry(self, model, row_id: int, error_message: str) -> Optional[RetryDecision]:
        now = self._clock()
        error_message = (error_message or "unknown error")[:MAX_ERROR_LENGTH]

        with self._session() as db:
            row = db.get(model, row_id)
            if row is None:
                logger.warning(
                    "Queue row not found",
                    extra={"context": {"table": model.__tablename__, "id": row_id}},
                )
                return None
            retries = row.retries + 1
            exhausted = is_exhausted(retries)
            to_status = MessageStatus.FAILED_PERMANENT if exhausted else MessageStatus.PENDING
            if self._transition_row(db, model, row_id, to_status) is None:
                return None

            next_retry_at = None if exhausted else now + backoff_ms(retries)
            row.retries = retries
            row.next_retry_at = next_retry_at
            row.last_error = error_message
            row.updated_at = now
            db.commit()

        context = {
            "table": model.__tablename__,
            "id": row_id,
            "attempt": retries,
            "max_retries": MAX_RETRIES,
            "error": error_message,
        }
        if exhausted:
            # Row is kept for manual review; nothing reschedules it.
            logger.error("Message failed permanently", extra={"context": context})
        else:
            context["retry_in"] = format_delay(next_retry_at - now)
            logger.info("Message scheduled for retry", extra={"context": context})

        return RetryDecision(id=row_id, retries=retries, exhausted=exhausted, next_retry_at=next_retry_at)

    # Stats & maintenance

    def get_stats(self) -> QueueStats:
        cutoff = self._clock() - MESSAGE_TTL_MS
        counts = {}
        with self._session() as db:
            for table in ("inbound_queue", "outbound_queue"):
                row = (
                    db.execute(
                        text(
                            f"""
                            SELECT
                              COUNT(CASE WHEN status = 'pending' THEN 1 END) AS pending,
                              COUNT(CASE WHEN status = 'processing' THEN 1 END) AS processing,
                              COUNT(CASE WHEN status = 'completed' THEN 1 END) AS completed,
                              COUNT(CASE WHEN status = 'failed_permanent' THEN 1 END) AS failed
                            FROM {table}
                            WHERE created_at > :cutoff
                            """
                        ),
                        {"cutoff": cutoff},
                    )
                    .mappings()
                    .one()
                )
                counts[table] = QueueCounts(**row)

        return QueueStats(inbound=counts["inbound_queue"], outbound=counts["outbound_queue"], db_path=self.path)

    def cleanup(self) -> dict[str, int]:
        now = self._clock()
        with self._session() as db:
            deleted = cleanup_expired(db, now=now)
        deleted["media_files"] = cleanup_media_files(self.media_dir, cutoff_ms=now - MESSAGE_TTL_MS)
        return deleted

    def run_maintenance(self) -> MaintenanceReport:
        """Periodic sweep: reclaim stuck rows, then expire old data."""
        with self._session() as db:
            recovered = recover_stuck(db, now=self._clock())
        deleted = self.cleanup()
        return MaintenanceReport(
            recovered_inbound=recovered["inbound_queue"],
            recovered_outbound=recovered["outbound_queue"],
            deleted_inbound=deleted["inbound_queue"],
            deleted_outbound=deleted["outbound_queue"],
            deleted_sent=deleted["sent_messages"],
            deleted_media_files=deleted["media_files"],
        )

    def close(self) -> None:
        self._engine.dispose()
