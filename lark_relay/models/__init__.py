from lark_relay.models.inbound_message import InboundMessage
from lark_relay.models.outbound_message import OutboundMessage
from lark_relay.models.sent_record import SentRecord

__all__ = [
    "InboundMessage",
    "OutboundMessage",
    "SentRecord",
]
