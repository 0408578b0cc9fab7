"""
Retry helpers for optimistic check-then-commit.

The engine itself never retries: it has no I/O. Callers that commit a
MutationPlan wrap their whole read-compute-commit cycle with retry_on_stale
so that a StaleSnapshotError re-reads the snapshot and recomputes.
"""

import time
import functools
from typing import Callable, Type, Tuple, Optional

from .errors import StaleSnapshotError


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (StaleSnapshotError,),
    on_retry: Optional[Callable] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator for retrying a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)
        sleep: Sleep function, replaceable in tests

    Example:
        @exponential_backoff(max_retries=3)
        def import_batch():
            population, graph = load_snapshot(session)
            result = run_import(rows, population, graph)
            apply_plan(session, result.plan)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)
                    sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator


def retry_on_stale(max_retries: int = 3, base_delay: float = 0.05, on_retry: Optional[Callable] = None):
    """Shorthand for exponential_backoff limited to StaleSnapshotError."""
    return exponential_backoff(
        max_retries=max_retries,
        base_delay=base_delay,
        exceptions=(StaleSnapshotError,),
        on_retry=on_retry,
    )
