from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

T = TypeVar("T")


async def async_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int = 2,
    backoff_seconds: float = 0.5,
    retry_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """Await ``fn`` until it succeeds, sleeping ``backoff * 2**attempt`` between tries.

    Only ``retry_exceptions`` are retried; anything else propagates at once.
    """
    last_exc: BaseException | None = None
    for attempt in range(retries + 1):
        try:
            return await fn()
        except retry_exceptions as exc:
            last_exc = exc
            if attempt >= retries:
                break
            if on_retry:
                on_retry(attempt + 1, exc)
            if backoff_seconds > 0:
                await asyncio.sleep(backoff_seconds * (2**attempt))
    if last_exc:
        raise last_exc
