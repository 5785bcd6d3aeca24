"""Shared concurrency primitives for the ingestion pipeline.

Two patterns are exposed:

1. **throttled_gather** -- A drop-in replacement for ``asyncio.gather`` that
   wraps each awaitable in a semaphore acquire/release.  Used to issue
   embedding batches for one dataset in parallel without flooding the
   provider.  Results keep the input order, so batch *i* still pairs with
   chunk batch *i*.

2. **call_with_timeout** -- Awaits a coroutine under a deadline and maps
   expiry onto :class:`~docrag.utils.errors.EmbeddingError` so a provider
   that never answers cannot stall an ingestion run.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from docrag.utils.errors import EmbeddingError

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding how many awaitables run at once.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def call_with_timeout(
    coro: Awaitable[_T],
    timeout: float,
    provider_name: str | None = None,
) -> _T:
    """Await *coro*, raising :class:`EmbeddingError` after *timeout* seconds."""
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise EmbeddingError(
            message=f"Embedding call timed out after {timeout:g}s",
            provider_name=provider_name,
        ) from exc
