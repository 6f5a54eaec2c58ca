import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from prometheus_client import Counter

from sandbox_proxy.vars import (
    PROXY_BACKOFF_BASE_MS,
    PROXY_BACKOFF_CAP_MS,
    PROXY_MAX_CONCURRENT,
    PROXY_RATE_LIMIT,
    PROXY_RATE_TABLE_SIZE,
    PROXY_RATE_WINDOW_SECONDS,
)

logger = logging.getLogger("uvicorn.error")

TaskFactory = Callable[[], Awaitable[Any]]

SCHEDULER_DELAYS = Counter(
    "proxy_scheduler_delays_total",
    "Outbound fetches delayed by per-origin rate limiting",
)


@dataclass
class RateLimitState:
    origin: str
    count: int
    window_reset_at: float


class RateLimitTable:
    """
    Per-origin request counters with fixed windows.

    The table is bounded: when a new origin would exceed ``max_origins`` the
    origins whose window already expired are purged first, then the oldest
    windows are evicted.
    """

    def __init__(
        self,
        limit: int = PROXY_RATE_LIMIT,
        window_seconds: float = PROXY_RATE_WINDOW_SECONDS,
        max_origins: int = PROXY_RATE_TABLE_SIZE,
        backoff_base_ms: int = PROXY_BACKOFF_BASE_MS,
        backoff_cap_ms: int = PROXY_BACKOFF_CAP_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_origins = max(1, max_origins)
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self._clock = clock
        self._states: Dict[str, RateLimitState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def get(self, origin: str) -> Optional[RateLimitState]:
        return self._states.get(origin)

    def backoff_seconds(self, count: int) -> float:
        """Delay applied to a request that finds ``count`` requests in its window."""
        if count < self.limit:
            return 0.0
        exponent = count - self.limit
        # 2 ** 15 already exceeds any sane cap
        delay_ms = self.backoff_base_ms * (2 ** min(exponent, 15))
        return min(delay_ms, self.backoff_cap_ms) / 1000.0

    def check_and_record(self, origin: str) -> float:
        """
        Record one request for ``origin`` and return how long it must wait
        before it may run. A cold origin never waits.
        """
        now = self._clock()
        state = self._states.get(origin)
        if state is None:
            self._make_room(now)
            state = RateLimitState(origin, 0, now + self.window_seconds)
            self._states[origin] = state
        elif now >= state.window_reset_at:
            state.count = 0
            state.window_reset_at = now + self.window_seconds

        delay = self.backoff_seconds(state.count)
        state.count += 1
        return delay

    def _make_room(self, now: float) -> None:
        if len(self._states) < self.max_origins:
            return
        expired = [o for o, s in self._states.items() if now >= s.window_reset_at]
        for origin in expired:
            del self._states[origin]
        if len(self._states) < self.max_origins:
            return
        batch = max(1, self.max_origins // 10)
        oldest = sorted(self._states.values(), key=lambda s: s.window_reset_at)[:batch]
        for state in oldest:
            del self._states[state.origin]
        logger.debug(f"[Scheduler] Evicted {len(oldest)} rate-limit entries")

    def snapshot(self) -> Dict[str, dict]:
        now = self._clock()
        return {
            origin: {
                "count": state.count,
                "resetIn": max(0.0, round(state.window_reset_at - now, 3)),
            }
            for origin, state in self._states.items()
        }


@dataclass(eq=False)
class OutboundTask:
    origin: str
    factory: TaskFactory
    future: asyncio.Future
    delayed: bool = False
    task: Optional[asyncio.Task] = None
    timer: Optional[asyncio.TimerHandle] = None


class RateLimitedScheduler:
    """
    Admission control for outbound fetches.

    At most ``max_concurrent`` tasks run at once; the rest wait in FIFO order.
    A task whose origin is over its rate limit is parked with ``call_later``
    for the backoff delay without holding a slot, then re-admitted at the head
    of the queue. Task errors propagate to the submitter; nothing is retried.
    """

    def __init__(
        self,
        max_concurrent: int = PROXY_MAX_CONCURRENT,
        rate_limits: Optional[RateLimitTable] = None,
    ):
        self.max_concurrent = max(1, max_concurrent)
        self.rate_limits = rate_limits if rate_limits is not None else RateLimitTable()
        self._queue: Deque[OutboundTask] = deque()
        self._running: Set[OutboundTask] = set()
        self._parked: Set[OutboundTask] = set()
        self._draining = False
        self._submitted = 0
        self._failed = 0

    @property
    def in_flight(self) -> int:
        return len(self._running)

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    async def submit(self, origin: str, factory: TaskFactory) -> Any:
        loop = asyncio.get_running_loop()
        entry = OutboundTask(origin=origin, factory=factory, future=loop.create_future())
        entry.future.add_done_callback(lambda _: self._on_settled(entry))
        self._submitted += 1
        self._queue.append(entry)
        self._drain()
        return await entry.future

    def _drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue and len(self._running) < self.max_concurrent:
                entry = self._queue.popleft()
                if entry.future.done():
                    continue
                if not entry.delayed:
                    delay = self.rate_limits.check_and_record(entry.origin)
                    if delay > 0:
                        self._park(entry, delay)
                        continue
                self._running.add(entry)
                entry.task = asyncio.get_running_loop().create_task(
                    self._run(entry), name=f"outbound-{entry.origin}"
                )
        finally:
            self._draining = False

    def _park(self, entry: OutboundTask, delay: float) -> None:
        entry.delayed = True
        self._parked.add(entry)
        SCHEDULER_DELAYS.inc()
        logger.info(
            f"[Scheduler] Rate limit reached for {entry.origin}, delaying {delay:.1f}s"
        )
        entry.timer = asyncio.get_running_loop().call_later(
            delay, self._readmit, entry
        )

    def _readmit(self, entry: OutboundTask) -> None:
        entry.timer = None
        self._parked.discard(entry)
        if entry.future.done():
            return
        self._queue.appendleft(entry)
        self._drain()

    async def _run(self, entry: OutboundTask) -> None:
        try:
            result = await entry.factory()
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as exc:
            self._failed += 1
            if not entry.future.done():
                entry.future.set_exception(exc)
        else:
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            self._running.discard(entry)
            self._drain()

    def _on_settled(self, entry: OutboundTask) -> None:
        if not entry.future.cancelled():
            return
        # The submitter gave up (timeout or disconnect): free its slot now.
        if entry.task is not None and not entry.task.done():
            entry.task.cancel()
        elif entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
            self._parked.discard(entry)
        else:
            try:
                self._queue.remove(entry)
            except ValueError:
                pass

    async def close(self) -> None:
        """Cancel queued, parked and running tasks."""
        entries = list(self._queue) + list(self._parked) + list(self._running)
        self._queue.clear()
        for entry in entries:
            entry.future.cancel()
        tasks = [entry.task for entry in entries if entry.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> dict:
        return {
            "queueLength": len(self._queue),
            "activeRequests": len(self._running),
            "delayedRequests": len(self._parked),
            "maxConcurrent": self.max_concurrent,
            "submitted": self._submitted,
            "failed": self._failed,
            "trackedOrigins": len(self.rate_limits),
            "rateLimits": self.rate_limits.snapshot(),
        }
