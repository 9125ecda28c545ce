from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from lark_relay.config import Settings
from lark_relay.dependencies import get_outbound_sender, get_queue, get_settings
from lark_relay.logging_config import get_logger
from lark_relay.schemas.queue import EnqueueResult, OutboundRequest
from lark_relay.services.outbound_sender import OutboundSender
from lark_relay.services.queue_service import MessageQueue

logger = get_logger("outbound_router")

router = APIRouter()


def _require_outbound_token(authorization: Optional[str], expected: str) -> None:
    if not expected:
        return
    scheme, _, provided = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or provided.strip() != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid outbound token")


@router.post("/lark/outbound", response_model=EnqueueResult)
async def submit_outbound(
    payload: OutboundRequest,
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    queue: MessageQueue = Depends(get_queue),
    sender: OutboundSender = Depends(get_outbound_sender),
):
    """Queue a gateway reply (or a mirrored message) for delivery to Lark."""
    _require_outbound_token(authorization, settings.outbound_token)

    try:
        result = queue.enqueue_outbound(
            payload.queue_type,
            payload.session_key,
            payload.chat_id,
            payload.content,
            run_id=payload.run_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if result.enqueued:
        sender.notify()
    else:
        logger.info(
            "Outbound submission not queued",
            extra={"context": {"chat_id": payload.chat_id, "reason": result.reason}},
        )
    return result
