import asyncio

import pytest

from agentdag import BackoffStrategy, RetryPolicy
from agentdag.utils.retry import compute_backoff, schedule_retry


def test_exponential_backoff_doubles():
    policy = RetryPolicy(delay=1000, backoff=BackoffStrategy.EXPONENTIAL)

    assert [compute_backoff(policy, n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_linear_backoff_is_constant():
    policy = RetryPolicy(delay=250, backoff=BackoffStrategy.LINEAR)

    assert [compute_backoff(policy, n) for n in (1, 2, 3)] == [0.25, 0.25, 0.25]


@pytest.mark.asyncio
async def test_schedule_retry_waits_out_delay():
    assert await schedule_retry(0.01, asyncio.Event())
    assert await schedule_retry(0)


@pytest.mark.asyncio
async def test_schedule_retry_is_interrupted_by_cancel():
    event = asyncio.Event()

    async def trigger():
        await asyncio.sleep(0.01)
        event.set()

    asyncio.create_task(trigger())
    assert not await asyncio.wait_for(schedule_retry(10, event), timeout=1)


@pytest.mark.asyncio
async def test_schedule_retry_returns_immediately_when_already_cancelled():
    event = asyncio.Event()
    event.set()

    assert not await schedule_retry(10, event)
