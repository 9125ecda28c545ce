from pathlib import Path
from typing import Optional

from lark_relay.logging_config import get_logger
from lark_relay.services.queue_service import MessageQueue

logger = get_logger("queue_registry")

DEFAULT_ACCOUNT_ID = "default"


class QueueRegistry:
    """Owns one MessageQueue per Lark account. Created by the application root."""

    def __init__(self, default_db_path: Path, *, media_dir: Optional[Path] = None):
        self.default_db_path = Path(default_db_path)
        self.media_dir = media_dir
        self._queues: dict[str, MessageQueue] = {}

    def get(self, account_id: str = DEFAULT_ACCOUNT_ID, db_path: Optional[Path] = None) -> MessageQueue:
        queue = self._queues.get(account_id)
        if queue is None:
            queue = MessageQueue(db_path or self._path_for(account_id), media_dir=self.media_dir)
            self._queues[account_id] = queue
            logger.info("Queue opened", extra={"context": {"account_id": account_id, "db_path": queue.path}})
        return queue

    def _path_for(self, account_id: str) -> Path:
        if account_id == DEFAULT_ACCOUNT_ID:
            return self.default_db_path
        return self.default_db_path.with_name(f"{self.default_db_path.stem}-{account_id}{self.default_db_path.suffix}")

    def close(self, account_id: str = DEFAULT_ACCOUNT_ID) -> None:
        queue = self._queues.pop(account_id, None)
        if queue is not None:
            queue.close()

    def close_all(self) -> None:
        for account_id in list(self._queues):
            self.close(account_id)

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._queues
