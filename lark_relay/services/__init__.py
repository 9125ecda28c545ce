from lark_relay.services.message_status import (
    InvalidTransitionError,
    MessageStatus,
    can_transition,
    is_terminal,
    transition,
)
from lark_relay.services.queue_registry import QueueRegistry
from lark_relay.services.queue_service import MessageQueue
