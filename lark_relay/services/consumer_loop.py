import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from lark_relay.logging_config import get_logger

logger = get_logger("consumer_loop")


class PollingConsumer(ABC):
    """Single-flight sweep loop woken by notify() or by the poll interval, whichever comes first."""

    name = "consumer"

    def __init__(self, poll_interval_seconds: float = 0.5):
        self.poll_interval_seconds = max(poll_interval_seconds, 0.05)
        self._wakeup = asyncio.Event()
        self._stopping = asyncio.Event()
        self._sweeping = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def notify(self) -> None:
        self._wakeup.set()

    def start(self) -> asyncio.Task:
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self.run(), name=f"lark-relay-{self.name}")
            logger.info("Consumer started", extra={"context": {"consumer": self.name}})
        return self._task

    async def stop(self, grace_seconds: float = 5.0) -> None:
        """Ask the loop to finish its current row, cancelling it after grace_seconds."""
        self._stopping.set()
        self._wakeup.set()
        if self._task is None:
            return
        try:
            # wait_for cancels the task when the grace period runs out
            await asyncio.wait_for(self._task, timeout=grace_seconds)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            pass
        self._task = None
        logger.info("Consumer stopped", extra={"context": {"consumer": self.name}})

    async def run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "Consumer sweep failed",
                    extra={"context": {"consumer": self.name, "error": str(exc)}},
                    exc_info=True,
                )
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    async def sweep(self) -> int:
        """Run one guarded pass. Returns the number of rows handled (0 if a pass is already running)."""
        if self._sweeping:
            return 0
        self._sweeping = True
        try:
            return await self.process_batch()
        finally:
            self._sweeping = False

    @abstractmethod
    async def process_batch(self) -> int:
        """Handle one batch of due rows and return how many were picked up."""

    async def sleep(self, seconds: float) -> bool:
        """Sleep unless the consumer is stopped first. Returns False when interrupted by stop()."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False
