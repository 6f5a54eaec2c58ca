import asyncio

import pytest

from sandbox_proxy.scheduler import RateLimitedScheduler, RateLimitTable


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimitTable:
    def test_backoff_is_zero_below_limit(self):
        table = RateLimitTable(limit=10)

        assert table.backoff_seconds(0) == 0.0
        assert table.backoff_seconds(9) == 0.0

    def test_backoff_doubles_and_is_capped(self):
        table = RateLimitTable(limit=10, backoff_base_ms=1000, backoff_cap_ms=30000)

        assert table.backoff_seconds(10) == 1.0
        assert table.backoff_seconds(11) == 2.0
        assert table.backoff_seconds(13) == 8.0
        assert table.backoff_seconds(15) == 30.0
        assert table.backoff_seconds(500) == 30.0

    def test_cold_origin_never_waits(self):
        table = RateLimitTable(limit=1, clock=FakeClock())

        assert table.check_and_record("a.example") == 0.0
        assert table.check_and_record("b.example") == 0.0

    def test_counts_within_window(self):
        table = RateLimitTable(limit=2, backoff_base_ms=1000, clock=FakeClock())

        delays = [table.check_and_record("example.com") for _ in range(4)]

        assert delays == [0.0, 0.0, 1.0, 2.0]
        assert table.get("example.com").count == 4

    def test_window_reset(self):
        clock = FakeClock()
        table = RateLimitTable(limit=1, window_seconds=60, clock=clock)
        table.check_and_record("example.com")
        assert table.check_and_record("example.com") > 0

        clock.now += 61

        assert table.check_and_record("example.com") == 0.0
        assert table.get("example.com").count == 1

    def test_table_is_bounded(self):
        clock = FakeClock()
        table = RateLimitTable(limit=5, window_seconds=60, max_origins=20, clock=clock)
        for i in range(20):
            clock.now += 0.1
            table.check_and_record(f"host{i}.example")

        table.check_and_record("newcomer.example")

        assert len(table) <= 20
        assert table.get("newcomer.example") is not None
        # The oldest windows go first
        assert table.get("host0.example") is None
        assert table.get("host19.example") is not None

    def test_expired_origins_are_purged_first(self):
        clock = FakeClock()
        table = RateLimitTable(limit=5, window_seconds=60, max_origins=3, clock=clock)
        table.check_and_record("stale.example")
        clock.now += 61
        table.check_and_record("fresh1.example")
        table.check_and_record("fresh2.example")

        table.check_and_record("fresh3.example")

        assert table.get("stale.example") is None
        assert len(table) == 3

    def test_snapshot(self):
        clock = FakeClock()
        table = RateLimitTable(window_seconds=60, clock=clock)
        table.check_and_record("example.com")
        clock.now += 10

        assert table.snapshot() == {"example.com": {"count": 1, "resetIn": 50.0}}


class TestRateLimitedScheduler:
    @pytest.mark.asyncio
    async def test_returns_task_result(self):
        scheduler = RateLimitedScheduler(max_concurrent=2)

        async def work():
            return "done"

        assert await scheduler.submit("example.com", work) == "done"
        assert scheduler.stats()["submitted"] == 1
        assert scheduler.in_flight == 0

    def test_keeps_an_injected_rate_table(self):
        table = RateLimitTable(limit=1)

        scheduler = RateLimitedScheduler(rate_limits=table)

        assert scheduler.rate_limits is table
        assert scheduler.rate_limits.limit == 1

    @pytest.mark.asyncio
    async def test_concurrency_is_capped(self):
        scheduler = RateLimitedScheduler(max_concurrent=2)
        release = asyncio.Event()
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await release.wait()
            running -= 1
            return True

        submissions = [
            asyncio.create_task(scheduler.submit(f"host{i}.example", work)) for i in range(5)
        ]
        await asyncio.sleep(0.01)

        assert scheduler.in_flight == 2
        assert scheduler.queue_depth == 3

        release.set()
        results = await asyncio.gather(*submissions)

        assert results == [True] * 5
        assert peak == 2
        assert scheduler.in_flight == 0
        assert scheduler.queue_depth == 0

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        scheduler = RateLimitedScheduler(max_concurrent=1)
        order = []

        def make(i):
            async def work():
                order.append(i)
                await asyncio.sleep(0)
            return work

        await asyncio.gather(*(scheduler.submit(f"h{i}.example", make(i)) for i in range(4)))

        assert order == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_errors_propagate_without_retry(self):
        scheduler = RateLimitedScheduler(max_concurrent=1)
        calls = 0

        async def failing():
            nonlocal calls
            calls += 1
            raise ValueError("upstream broke")

        with pytest.raises(ValueError, match="upstream broke"):
            await scheduler.submit("example.com", failing)

        assert calls == 1
        assert scheduler.stats()["failed"] == 1
        assert scheduler.in_flight == 0

    @pytest.mark.asyncio
    async def test_timeout_frees_the_slot(self):
        scheduler = RateLimitedScheduler(max_concurrent=1)
        cancelled = asyncio.Event()

        async def hangs():
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def quick():
            return "ok"

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(scheduler.submit("slow.example", hangs), timeout=0.05)

        await asyncio.wait_for(cancelled.wait(), timeout=1)
        assert await asyncio.wait_for(scheduler.submit("fast.example", quick), timeout=1) == "ok"

    @pytest.mark.asyncio
    async def test_rate_limited_origin_is_delayed_without_holding_a_slot(self):
        table = RateLimitTable(limit=1, backoff_base_ms=100, backoff_cap_ms=100)
        scheduler = RateLimitedScheduler(max_concurrent=1, rate_limits=table)
        finished = []

        def make(name):
            async def work():
                finished.append(name)
                return name
            return work

        # Second request to the same origin gets parked for 100ms
        first = asyncio.create_task(scheduler.submit("busy.example", make("busy-1")))
        second = asyncio.create_task(scheduler.submit("busy.example", make("busy-2")))
        await asyncio.sleep(0.01)

        assert scheduler.stats()["delayedRequests"] == 1
        assert await scheduler.submit("other.example", make("other")) == "other"
        await asyncio.gather(first, second)

        assert finished == ["busy-1", "other", "busy-2"]
        assert scheduler.stats()["delayedRequests"] == 0

    @pytest.mark.asyncio
    async def test_close_cancels_pending_work(self):
        scheduler = RateLimitedScheduler(max_concurrent=1)
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        running = asyncio.create_task(scheduler.submit("a.example", blocked))
        queued = asyncio.create_task(scheduler.submit("b.example", blocked))
        await asyncio.sleep(0.01)

        await scheduler.close()

        with pytest.raises(asyncio.CancelledError):
            await running
        with pytest.raises(asyncio.CancelledError):
            await queued
        assert scheduler.in_flight == 0
