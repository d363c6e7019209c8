"""Tests for request coalescing, debounce and the cooldown window."""

import asyncio

import pytest

from giftsearch.coalescer import CoalescedRequestCancelled, RequestCoalescer

from conftest import make_products


class CountingExecute:
    def __init__(self, result=None, error=None, delay=0.0):
        self.calls = []
        self.result = result if result is not None else make_products("gift", 2)
        self.error = error
        self.delay = delay

    async def __call__(self, query):
        self.calls.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_execution():
    coalescer = RequestCoalescer(debounce_seconds=0.05)
    execute = CountingExecute()

    results = await asyncio.gather(*(coalescer.run("Gift", execute) for _ in range(10)))

    assert execute.calls == ["gift"]
    assert all(result is results[0] for result in results)
    assert coalescer.stats()["coalesced"] == 9
    assert coalescer.pending_count() == 0


@pytest.mark.asyncio
async def test_variants_of_the_same_query_are_coalesced():
    coalescer = RequestCoalescer(debounce_seconds=0.02)
    execute = CountingExecute()

    await asyncio.gather(coalescer.run("Blue Shoes", execute), coalescer.run("blue   shoes!", execute))

    assert len(execute.calls) == 1


@pytest.mark.asyncio
async def test_failure_rejects_every_waiter_with_the_same_error():
    coalescer = RequestCoalescer(debounce_seconds=0.02)
    boom = RuntimeError("upstream exploded")
    execute = CountingExecute(error=boom)

    outcomes = await asyncio.gather(*(coalescer.run("gift", execute) for _ in range(4)), return_exceptions=True)

    assert len(execute.calls) == 1
    assert all(outcome is boom for outcome in outcomes)
    # Failures do not start a cooldown.
    assert not coalescer.in_cooldown("gift")


@pytest.mark.asyncio
async def test_cooldown_suppresses_repeat_with_empty_result(clock):
    """Default mode keeps the hard suppression: a repeat inside 5s gets []."""

    coalescer = RequestCoalescer(debounce_seconds=0, cooldown_seconds=5, clock=clock)
    execute = CountingExecute()

    first = await coalescer.run("gift", execute)
    clock.advance(4)
    repeat = await coalescer.run("gift", execute)

    assert first
    assert repeat == []
    assert len(execute.calls) == 1
    assert coalescer.stats()["suppressed"] == 1

    clock.advance(2)
    again = await coalescer.run("gift", execute)
    assert again == first
    assert len(execute.calls) == 2


@pytest.mark.asyncio
async def test_cooldown_can_reuse_previous_result(clock):
    coalescer = RequestCoalescer(debounce_seconds=0, cooldown_seconds=5, reuse_in_cooldown=True, clock=clock)
    execute = CountingExecute()

    first = await coalescer.run("gift", execute)
    repeat = await coalescer.run("gift", execute)

    assert repeat is first
    assert len(execute.calls) == 1


@pytest.mark.asyncio
async def test_cancelled_owner_rejects_waiters():
    coalescer = RequestCoalescer(debounce_seconds=1.0)
    execute = CountingExecute()

    owner = asyncio.create_task(coalescer.run("gift", execute))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(coalescer.run("gift", execute))
    await asyncio.sleep(0)

    owner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await owner
    with pytest.raises(CoalescedRequestCancelled):
        await waiter
    assert execute.calls == []
    assert coalescer.pending_count() == 0


@pytest.mark.asyncio
async def test_close_rejects_pending_waiters():
    coalescer = RequestCoalescer(debounce_seconds=1.0)
    execute = CountingExecute()

    owner = asyncio.create_task(coalescer.run("gift", execute))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(coalescer.run("gift", execute))
    await asyncio.sleep(0)

    coalescer.close()
    with pytest.raises(CoalescedRequestCancelled):
        await waiter
    owner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await owner


@pytest.mark.asyncio
async def test_expired_cooldown_state_is_forgotten(clock):
    coalescer = RequestCoalescer(debounce_seconds=0, cooldown_seconds=5, reuse_in_cooldown=True, clock=clock)
    execute = CountingExecute()

    for idx in range(200):
        await coalescer.run(f"query {idx}", execute)
    assert coalescer.stats()["reusable_results"] == 200

    clock.advance(60 * 60)
    await coalescer.run("one more", execute)

    stats = coalescer.stats()
    assert stats["cooldown"] == 1
    assert stats["reusable_results"] == 1


@pytest.mark.asyncio
async def test_zero_cooldown_keeps_no_state():
    coalescer = RequestCoalescer(debounce_seconds=0, cooldown_seconds=0, reuse_in_cooldown=True)
    execute = CountingExecute()

    await coalescer.run("gift", execute)
    await coalescer.run("gift", execute)

    assert len(execute.calls) == 2
    assert coalescer.stats()["cooldown"] == 0
    assert coalescer.stats()["reusable_results"] == 0
