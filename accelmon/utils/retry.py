from __future__ import annotations

import random
import time
from typing import Callable, Tuple, Type, TypeVar


T = TypeVar("T")


def exponential_backoff(
    attempt: int,
    base_seconds: float,
    cap_seconds: float,
) -> float:
    return min(cap_seconds, base_seconds * (2 ** max(0, attempt - 1)))


def with_retries(
    func: Callable[[], T],
    max_attempts: int,
    base_seconds: float,
    cap_seconds: float,
    jitter_fraction: float = 0.1,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = (),
) -> T:
    """Call ``func`` until it succeeds or ``max_attempts`` is reached.

    Exceptions listed in ``give_up_on`` are re-raised immediately even when
    they also match ``retry_on``.
    """
    attempt = 1
    while True:
        try:
            return func()
        except give_up_on:
            raise
        except retry_on:
            if attempt >= max_attempts:
                raise
            delay = exponential_backoff(attempt, base_seconds, cap_seconds)
            jitter = delay * jitter_fraction * (2 * random.random() - 1)
            time.sleep(max(0.0, delay + jitter))
            attempt += 1
