"""
Tests for the keyed single-flight Throttler.
"""

import asyncio

import pytest

from controlplane.common.core.throttler import Throttler


class TestThrottler:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_attempt(self):
        throttler = Throttler(expiry=60.0)
        calls = []
        release = asyncio.Event()

        async def create(able_to_create: bool):
            calls.append(able_to_create)
            if able_to_create:
                await release.wait()
                return "address-1"
            return "from-cache"

        tasks = [asyncio.create_task(throttler.run_once("uid-1", create)) for _ in range(10)]
        await asyncio.sleep(0)
        assert throttler.is_in_flight("uid-1")

        release.set()
        results = await asyncio.gather(*tasks)

        assert calls == [True]
        assert results == ["address-1"] * 10
        assert not throttler.is_in_flight("uid-1")

    @pytest.mark.asyncio
    async def test_caller_after_success_reads_cache(self):
        throttler = Throttler(expiry=60.0)

        async def create(able_to_create: bool):
            return "created" if able_to_create else "cached"

        assert await throttler.run_once("uid-1", create) == "created"
        assert await throttler.run_once("uid-1", create) == "cached"

    @pytest.mark.asyncio
    async def test_success_forgotten_after_expiry(self):
        throttler = Throttler(expiry=0.01)

        async def create(able_to_create: bool):
            return able_to_create

        assert await throttler.run_once("uid-1", create) is True
        await asyncio.sleep(0.02)
        assert await throttler.run_once("uid-1", create) is True

    @pytest.mark.asyncio
    async def test_failure_shared_then_retried(self):
        throttler = Throttler()
        attempts = []
        release = asyncio.Event()

        async def failing(able_to_create: bool):
            attempts.append(able_to_create)
            await release.wait()
            raise RuntimeError("boom")

        first = asyncio.create_task(throttler.run_once("uid-1", failing))
        second = asyncio.create_task(throttler.run_once("uid-1", failing))
        await asyncio.sleep(0)
        release.set()

        for task in (first, second):
            with pytest.raises(RuntimeError):
                await task
        assert attempts == [True]

        # Failures are not remembered: the next caller creates again
        async def ok(able_to_create: bool):
            return able_to_create

        assert await throttler.run_once("uid-1", ok) is True

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        throttler = Throttler()

        async def create(able_to_create: bool):
            return able_to_create

        assert await throttler.run_once("a", create) is True
        assert await throttler.run_once("b", create) is True

    @pytest.mark.asyncio
    async def test_forget_allows_new_attempt(self):
        throttler = Throttler()

        async def create(able_to_create: bool):
            return able_to_create

        await throttler.run_once("uid-1", create)
        throttler.forget("uid-1")
        assert await throttler.run_once("uid-1", create) is True

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_attempt(self):
        throttler = Throttler()
        release = asyncio.Event()

        async def create(able_to_create: bool):
            await release.wait()
            return "done"

        owner = asyncio.create_task(throttler.run_once("uid-1", create))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(throttler.run_once("uid-1", create))
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        release.set()
        assert await owner == "done"
