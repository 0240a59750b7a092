"""Backoff retries for transport failures (connection resets, timeouts)."""

import time
from functools import wraps
from typing import Callable, Tuple, Type

import structlog

log = structlog.stdlib.get_logger()


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (zero-based), capped at ``max_delay``."""
    return min(base_delay * (2**attempt), max_delay)


def exponential_backoff_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] | None = None,
) -> Callable:
    """
    Retry the decorated call in place when it raises one of ``exceptions``.

    A busy Repository must not be listed here: it is answered by rescheduling
    the step on the trigger queue, not by sleeping inside the request.

    Args:
        max_retries: Retries after the first attempt
        base_delay: Wait before the first retry, doubled for each further one
        max_delay: Upper bound for a single wait
        exceptions: Exception types that count as transport failures
        sleep: Wait function (defaults to time.sleep)

    Returns:
        Decorator
    """
    if max_retries < 0:
        raise ValueError("max_retries must not be negative")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        log.error(
                            "transport_retries_exhausted",
                            operation=func.__qualname__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise

                    delay = backoff_delay(attempt, base_delay, max_delay)
                    attempt += 1
                    log.warning(
                        "transport_error_retrying",
                        operation=func.__qualname__,
                        retry=attempt,
                        max_retries=max_retries,
                        delay_seconds=delay,
                        error_type=type(e).__name__,
                    )
                    (sleep or time.sleep)(delay)

        return wrapper

    return decorator
