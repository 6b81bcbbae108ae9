"""
Retry policy: backoff delay and the retry-or-dead decision.

Both functions are pure and independent of the store.
"""

import math

from queuectl.constants import DEFAULT_BACKOFF_BASE, MAX_BACKOFF_SECONDS, RetryDecision


def backoff_delay(attempt: int, base: float = DEFAULT_BACKOFF_BASE) -> int:
    """
    Seconds to wait before the next attempt: ``floor(base ** attempt)``.

    Capped at ``MAX_BACKOFF_SECONDS`` so a large retry budget still yields a
    retry time that fits in a datetime.

    Args:
        attempt: Attempts made so far (1-based); values below 1 count as 1.
        base: Exponent base, normally from the ``backoff-base`` config key.

    Returns:
        Whole seconds of delay.
    """
    if attempt <= 0:
        attempt = 1
    try:
        delay = base**attempt
    except OverflowError:
        return MAX_BACKOFF_SECONDS
    return min(math.floor(delay), MAX_BACKOFF_SECONDS)


def decide(attempts: int, max_retries: int) -> RetryDecision:
    """DEAD once the attempt count reaches max_retries, RETRY before that."""
    if attempts >= max_retries:
        return RetryDecision.DEAD
    return RetryDecision.RETRY
