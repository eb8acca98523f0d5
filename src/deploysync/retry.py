"""
Bounded retry with exponential backoff.

Used by every transport's connect step.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def with_retry(
    func: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` until it succeeds or the attempt budget is spent.

    Attempts run one at a time; the delay before attempt ``n + 1`` is
    ``initial_delay * backoff_factor ** (n - 1)``.

    Args:
        func: Zero-argument callable to invoke.
        max_retries: Total number of attempts (minimum 1).
        initial_delay: Seconds to wait after the first failure.
        backoff_factor: Multiplier applied to the delay after each failure.
        should_retry: Optional predicate; when it returns False for an
            exception, that exception propagates immediately.
        sleep: Sleep function (injected by tests).

    Returns:
        Whatever ``func`` returns.

    Raises:
        Exception: The last exception raised by ``func``.
    """
    attempts = max(1, max_retries)
    delay = initial_delay

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except Exception as e:
            if should_retry is not None and not should_retry(e):
                raise
            if attempt >= attempts:
                raise
            logger.debug(
                "Attempt %d/%d failed: %s; retrying in %.1fs",
                attempt,
                attempts,
                e,
                delay,
            )
            sleep(delay)
            delay *= backoff_factor

    # Unreachable: the loop either returns or raises.
    raise RuntimeError("with_retry exhausted without result")
