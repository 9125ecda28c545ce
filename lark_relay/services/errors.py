from typing import Optional

# Lark open-platform codes that will not succeed on retry until someone
# changes permissions, chat membership or the message itself.
NON_RETRYABLE_CODES = frozenset(
    {
        99991672,  # app lacks the required scope
        99991401,  # access denied for this tenant
        230001,  # invalid request parameter
        230002,  # bot is not in the chat
        230006,  # bot ability not enabled for the app
        230013,  # bot has no availability to this user
        230017,  # bot removed from / muted in the chat
        230025,  # message content too long
        230099,  # card content failed validation
        234001,  # invalid image key
        234006,  # image too large
    }
)


class DeliveryError(Exception):
    """Base class for failures moving a message between Lark and the gateway."""


class TransientIOError(DeliveryError):
    """Network failure or timeout. Always retryable."""


class PermanentRejection(DeliveryError):
    def __init__(self, code: int, message: str):
        self.code = code
        super().__init__(f"[{code}] {message}")


class ExhaustedRetries(DeliveryError):
    def __init__(self, attempts: int, last_error: Optional[str]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"send failed after {attempts} attempts: {last_error}")


class GatewayError(DeliveryError):
    """Processing backend rejected or failed the request."""


def is_non_retryable(code: Optional[int]) -> bool:
    return code is not None and code in NON_RETRYABLE_CODES
