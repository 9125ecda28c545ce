from enum import Enum


class MessageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED_PERMANENT = "failed_permanent"


# Retry transitions are allowed from pending as well as processing so a row that
# was reclaimed by recovery can still be rescheduled by a late failure report.
VALID_TRANSITIONS = {
    MessageStatus.PENDING: [
        MessageStatus.PROCESSING,
        MessageStatus.PENDING,
        MessageStatus.COMPLETED,
        MessageStatus.FAILED_PERMANENT,
    ],
    MessageStatus.PROCESSING: [
        MessageStatus.PENDING,
        MessageStatus.COMPLETED,
        MessageStatus.FAILED_PERMANENT,
    ],
    MessageStatus.COMPLETED: [],
    MessageStatus.FAILED_PERMANENT: [],
}

TERMINAL_STATUSES = frozenset({MessageStatus.COMPLETED, MessageStatus.FAILED_PERMANENT})


class InvalidTransitionError(Exception):
    def __init__(self, from_status: MessageStatus, to_status: MessageStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: MessageStatus, to_status: MessageStatus) -> bool:
    """Check if transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def transition(from_status: MessageStatus, to_status: MessageStatus) -> MessageStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def is_terminal(status: MessageStatus) -> bool:
    return status in TERMINAL_STATUSES
