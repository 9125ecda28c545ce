from fastapi import APIRouter, Depends

from lark_relay.dependencies import get_queue
from lark_relay.schemas.queue import QueueStats
from lark_relay.services.queue_service import MessageQueue

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/queue/stats", response_model=QueueStats)
def queue_stats(queue: MessageQueue = Depends(get_queue)):
    """Status counts for both queues over the retention window."""
    return queue.get_stats()
