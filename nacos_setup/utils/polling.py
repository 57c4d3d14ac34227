"""
Bounded poll-until helper shared by readiness waits, PID discovery and graceful stops
"""
import time
from typing import Callable, Optional, TypeVar

T = TypeVar('T')


def poll_until(
    predicate: Callable[[], Optional[T]],
    attempts: int,
    interval: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    sleep_first: bool = False,
    on_wait: Optional[Callable[[int], None]] = None,
) -> Optional[T]:
    """
    Call predicate up to `attempts` times, sleeping `interval` seconds between calls.

    Returns the first truthy value predicate produces, or None once the bound is
    exhausted. With sleep_first the sleep happens before each call instead of after,
    which suits processes that need a moment before they can be observed.
    """
    for attempt in range(attempts):
        if sleep_first:
            sleep(interval)
        result = predicate()
        if result:
            return result
        if on_wait is not None:
            on_wait(attempt + 1)
        if not sleep_first and attempt < attempts - 1:
            sleep(interval)
    return None
