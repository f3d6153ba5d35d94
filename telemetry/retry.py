from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, Optional, Type, TypeVar

T = TypeVar("T")


def compute_backoff(attempt: int, base_delay: float, step: float) -> float:
    """Linear backoff: `base_delay` plus `step` for every prior attempt."""
    return base_delay + step * attempt


async def retry_async_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    base_delay: float = 0.3,
    step: float = 0.5,
    retry_exceptions: Iterable[Type[BaseException]] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `fn` up to `retries` times, sleeping between failed attempts.

    Only exceptions listed in `retry_exceptions` are retried; the last one is
    re-raised once attempts run out.
    """
    retryable = tuple(retry_exceptions)
    attempts = max(retries, 1)
    for attempt in range(attempts):
        try:
            return await fn()
        except retryable as exc:
            if attempt >= attempts - 1:
                raise
            delay = compute_backoff(attempt, base_delay, step)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await sleep(delay)
    raise RuntimeError("unreachable")
