from lark_relay.schemas.lark import LarkMessageEvent, LarkWebhookEvent, LarkWebhookResponse
from lark_relay.schemas.queue import Attachment, EnqueueResult, OutboundRequest, QueueStats

__all__ = [
    "Attachment",
    "EnqueueResult",
    "OutboundRequest",
    "QueueStats",
    "LarkMessageEvent",
    "LarkWebhookEvent",
    "LarkWebhookResponse",
]
