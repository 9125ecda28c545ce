"""Backoff and exhaustion policy shared by the queue and transport retry loops.

120 retries with a 120 minute ceiling keeps a failing message alive for
roughly ten days before it is parked as failed_permanent.
"""

MAX_RETRIES = 120
SEND_MAX_RETRIES = 120
BASE_MS = 1000
MAX_BACKOFF_MS = 120 * 60 * 1000
# 2**17 seconds already exceeds the ceiling; capping the exponent keeps the
# intermediate value small for large retry counts.
MAX_EXPONENT = 17

MESSAGE_TTL_MS = 30 * 24 * 60 * 60 * 1000
DEDUP_WINDOW_MS = 10 * 60 * 1000
STUCK_THRESHOLD_MS = 5 * 60 * 1000


def backoff_ms(retries: int) -> int:
    """Delay before retry number `retries` (1-based)."""
    exponent = min(max(retries, 1) - 1, MAX_EXPONENT)
    return min(BASE_MS * 2**exponent, MAX_BACKOFF_MS)


def is_exhausted(retries: int, max_retries: int = MAX_RETRIES) -> bool:
    return retries >= max_retries


def format_delay(delay_ms: int) -> str:
    if delay_ms >= 60_000:
        return f"{round(delay_ms / 60_000)}m"
    return f"{round(delay_ms / 1000)}s"
