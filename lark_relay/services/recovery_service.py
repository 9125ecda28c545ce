"""Reclaiming stuck rows and expiring old data from the queue store."""

import os
from pathlib import Path
from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from lark_relay.logging_config import get_logger
from lark_relay.services.retry_policy import MESSAGE_TTL_MS, STUCK_THRESHOLD_MS

logger = get_logger("recovery_service")

QUEUE_TABLES = ("inbound_queue", "outbound_queue")


def reset_processing(db: Session, *, now: int) -> dict[str, int]:
    """Return every processing row to pending. Used once when the store is opened.

    A row left in processing across a restart is an interrupted attempt, so
    retries stays as it was.
    """
    reset = {}
    for table in QUEUE_TABLES:
        result = db.execute(
            text(
                f"""
                UPDATE {table}
                SET status = 'pending',
                    updated_at = :now
                WHERE status = 'processing'
                """
            ),
            {"now": now},
        )
        reset[table] = result.rowcount or 0
    db.commit()

    if any(reset.values()):
        logger.warning(
            "Reset interrupted messages to pending",
            extra={"context": {"inbound": reset["inbound_queue"], "outbound": reset["outbound_queue"]}},
        )
    return reset


def recover_stuck(db: Session, *, now: int, threshold_ms: int = STUCK_THRESHOLD_MS) -> dict[str, int]:
    """Reclaim rows a hung consumer has held in processing for longer than threshold_ms."""
    cutoff = now - threshold_ms
    recovered = {}
    for table in QUEUE_TABLES:
        result = db.execute(
            text(
                f"""
                UPDATE {table}
                SET status = 'pending',
                    updated_at = :now
                WHERE status = 'processing'
                  AND updated_at < :cutoff
                """
            ),
            {"now": now, "cutoff": cutoff},
        )
        recovered[table] = result.rowcount or 0
    db.commit()

    if any(recovered.values()):
        logger.warning(
            "Recovered stuck messages",
            extra={"context": {"inbound": recovered["inbound_queue"], "outbound": recovered["outbound_queue"]}},
        )
    return recovered


def cleanup_expired(db: Session, *, now: int, ttl_ms: int = MESSAGE_TTL_MS) -> dict[str, int]:
    """Delete completed rows and sent-ledger entries older than the TTL.

    failed_permanent rows are kept for manual review.
    """
    cutoff = now - ttl_ms
    deleted = {}
    for table in QUEUE_TABLES:
        result = db.execute(
            text(f"DELETE FROM {table} WHERE status = 'completed' AND created_at < :cutoff"),
            {"cutoff": cutoff},
        )
        deleted[table] = result.rowcount or 0

    result = db.execute(text("DELETE FROM sent_messages WHERE created_at < :cutoff"), {"cutoff": cutoff})
    deleted["sent_messages"] = result.rowcount or 0
    db.commit()

    if deleted["inbound_queue"] or deleted["outbound_queue"]:
        logger.info(
            "Cleanup removed expired messages",
            extra={
                "context": {
                    "inbound": deleted["inbound_queue"],
                    "outbound": deleted["outbound_queue"],
                    "sent": deleted["sent_messages"],
                }
            },
        )
    return deleted


def cleanup_media_files(media_dir: Optional[Path], *, cutoff_ms: int) -> int:
    """Delete inbound media files last modified before cutoff_ms.

    A missing directory, or a file removed by someone else during the scan, is
    not an error.
    """
    if media_dir is None:
        return 0
    media_dir = Path(media_dir)
    try:
        entries = list(os.scandir(media_dir))
    except FileNotFoundError:
        return 0
    except NotADirectoryError:
        logger.warning("Media path is not a directory", extra={"context": {"media_dir": str(media_dir)}})
        return 0

    deleted = 0
    for entry in entries:
        try:
            if not entry.is_file(follow_symlinks=False):
                continue
            if entry.stat().st_mtime * 1000 < cutoff_ms:
                os.unlink(entry.path)
                deleted += 1
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning(
                "Failed to remove media file",
                extra={"context": {"path": entry.path, "error": str(exc)}},
            )

    if deleted:
        logger.info(
            "Media cleanup removed old files",
            extra={"context": {"media_dir": str(media_dir), "deleted": deleted}},
        )
    return deleted
