"""
Async helpers shared by every stage that suspends on I/O.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


async def run_with_timeout(awaitable: Awaitable[T], seconds: float) -> T:
    """
    Await `awaitable`, giving up after `seconds`.

    On timeout the pending operation is cancelled, so a late response can
    never be observed by the caller.

    Raises:
        TimeoutError: When the bound is exceeded
    """
    return await asyncio.wait_for(awaitable, timeout=seconds)
