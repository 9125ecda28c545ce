import json
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lark_relay.config import Settings
from lark_relay.dependencies import get_inbound_consumer, get_ingestor, get_settings
from lark_relay.logging_config import get_logger
from lark_relay.schemas.lark import LarkMessageEvent, LarkWebhookEvent, LarkWebhookResponse
from lark_relay.services.event_crypto import DecryptError, decrypt_payload
from lark_relay.services.event_parser import LarkEventIngestor
from lark_relay.services.inbound_consumer import InboundConsumer

logger = get_logger("lark_webhook")

router = APIRouter()

MESSAGE_RECEIVE_EVENT = "im.message.receive_v1"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=LarkWebhookResponse(success=False, message=message).model_dump(),
    )


async def parse_lark_payload(request: Request) -> Optional[dict]:
    """Decode the UTF-8 JSON body. Returns None for anything that is not a JSON object."""
    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Invalid Lark webhook JSON: {e}")
        return None
    return body if isinstance(body, dict) else None


def _token_matches(payload: LarkWebhookEvent, expected: str) -> bool:
    if not expected:
        return True
    provided = payload.token or (payload.header.token if payload.header else None)
    return provided == expected


@router.post("/lark/events")
async def handle_lark_event(
    request: Request,
    settings: Settings = Depends(get_settings),
    ingestor: LarkEventIngestor = Depends(get_ingestor),
    consumer: InboundConsumer = Depends(get_inbound_consumer),
):
    """
    Handle Lark event callbacks:
    - encrypted bodies -> decrypt with the configured Encrypt Key
    - url_verification -> echo the challenge
    - im.message.receive_v1 -> persist to the inbound queue, then acknowledge

    A message is acknowledged with 200 once it is stored (or was stored
    before). If the store write fails the handler answers 500 so Lark
    redelivers; the message_id unique key absorbs the repeat.
    """
    body = await parse_lark_payload(request)
    if body is None:
        return _error(400, "Invalid Lark payload")

    if body.get("encrypt"):
        if not settings.lark_encrypt_key:
            logger.error("Encrypted event received but no encrypt key is configured")
            return _error(400, "Encrypt key not configured")
        try:
            body = decrypt_payload(body["encrypt"], settings.lark_encrypt_key)
        except DecryptError as e:
            logger.warning(f"Lark event decryption failed: {e}")
            return _error(400, "Decrypt failed")

    try:
        payload = LarkWebhookEvent.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Invalid Lark event envelope: {e}")
        return _error(400, "Invalid Lark payload")

    if payload.type == "url_verification":
        if not _token_matches(payload, settings.lark_verification_token):
            logger.warning("URL verification with invalid token")
            return JSONResponse(status_code=401, content={"error": "invalid verification token"})
        return {"challenge": payload.challenge}

    if not _token_matches(payload, settings.lark_verification_token):
        logger.warning("Event with invalid verification token ignored")
        return LarkWebhookResponse(success=False, message="Invalid verification token")

    event_type = payload.header.event_type if payload.header else None
    if event_type != MESSAGE_RECEIVE_EVENT or not payload.event:
        return LarkWebhookResponse(success=True, message="No actionable content")

    try:
        event = LarkMessageEvent.model_validate(payload.event)
    except ValidationError as e:
        # redelivery would fail the same way
        logger.warning(f"Invalid Lark message event: {e}")
        return LarkWebhookResponse(success=False, message="Invalid message event")

    message_id = event.message.message_id if event.message else None
    try:
        result = await ingestor.ingest(event)
    except Exception as e:
        logger.error(
            "Failed to store Lark message",
            extra={"context": {"message_id": message_id, "error": str(e)}},
            exc_info=True,
        )
        return _error(500, "Failed to store message")

    if result is None:
        return LarkWebhookResponse(success=True, message="Ignored")
    if result.enqueued:
        consumer.notify()
        return LarkWebhookResponse(success=True, message="Queued", enqueued=True)
    return LarkWebhookResponse(success=True, message=f"Already queued ({result.existing})", enqueued=False)
