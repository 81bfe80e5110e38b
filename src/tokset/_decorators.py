"""Timing decorator for the long-running stages."""

import functools
import logging
import time
from typing import Callable


def measure_time(stage: str) -> Callable[[Callable], Callable]:
    """
    Log how long ``stage`` took on the decorated function's module logger.

    Failed calls are timed too, and logged as such before the error
    propagates.
    """

    def decorator(func: Callable) -> Callable:
        log = logging.getLogger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            outcome = "failed after"
            try:
                result = func(*args, **kwargs)
                outcome = "finished in"
                return result
            finally:
                elapsed = time.perf_counter() - start
                log.info(f"{stage} {outcome} {elapsed:.2f} s")

        return wrapper

    return decorator
