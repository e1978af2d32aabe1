from __future__ import annotations

import asyncio
from typing import Optional

from ..contracts import BackoffStrategy, RetryPolicy


def compute_backoff(policy: RetryPolicy, attempt: int) -> float:
    """Delay in seconds to wait after failed ``attempt`` (1-based)."""
    if policy.backoff == BackoffStrategy.EXPONENTIAL:
        delay_ms = policy.delay * 2 ** (attempt - 1)
    else:
        delay_ms = policy.delay
    return delay_ms / 1000


async def schedule_retry(
    delay: float, cancel_event: Optional[asyncio.Event] = None
) -> bool:
    """Sleep for ``delay`` seconds.

    Returns ``False`` without finishing the sleep if ``cancel_event`` is set.
    """
    if cancel_event is None:
        await asyncio.sleep(delay)
        return True
    if cancel_event.is_set():
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return True
    return False
