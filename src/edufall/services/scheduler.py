"""Timer scheduling for countdowns, time limits and cleanup delays.

Game logic never sleeps directly. Every delay goes through a ``Scheduler`` so
that the real server runs on asyncio time while tests drive a
``ManualScheduler`` forward instantly.
"""
import asyncio
import heapq
import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

logger = logging.getLogger(__name__)

TimerCallback = Callable[..., Union[None, Awaitable[Any]]]


async def _invoke(callback: TimerCallback, args: tuple, name: Optional[str]) -> None:
    """Run a sync or async callback, logging instead of raising."""
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"Timer {name or getattr(callback, '__name__', 'callback')} failed: {e}",
                     exc_info=True)


class TimerHandle:
    """Handle to a scheduled callback."""

    def __init__(self, when: float, name: Optional[str] = None):
        self.when = when
        self.name = name
        self._cancelled = False
        self._on_cancel: Optional[Callable[[], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel:
            self._on_cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "pending"
        return f"<TimerHandle {self.name} at {self.when:.2f} {state}>"


class Scheduler:
    """Interface shared by the real and manual schedulers."""

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: TimerCallback, *args,
                   name: Optional[str] = None) -> TimerHandle:
        raise NotImplementedError

    def cancel_all(self) -> None:
        raise NotImplementedError

    def pending(self) -> int:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    """Runs each timer as a tracked asyncio task."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._stopping = False

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: TimerCallback, *args,
                   name: Optional[str] = None) -> TimerHandle:
        handle = TimerHandle(self.now() + max(0.0, delay), name)
        if self._stopping:
            logger.debug(f"Not scheduling {name} while stopping")
            handle._cancelled = True
            return handle

        async def run_later():
            await asyncio.sleep(max(0.0, delay))
            if not handle.cancelled:
                await _invoke(callback, args, name)

        task = asyncio.create_task(run_later(), name=name)

        def cleanup_task(t):
            try:
                self._tasks.discard(t)
                exc = t.exception()
                if exc:
                    logger.error(f"Task {t.get_name()} failed: {exc}")
            except (asyncio.CancelledError, RuntimeError):
                pass

        task.add_done_callback(cleanup_task)
        self._tasks.add(task)
        handle._on_cancel = task.cancel
        return handle

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel every pending timer and wait for the tasks to finish."""
        self._stopping = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if not tasks:
            return
        try:
            async with asyncio.timeout(timeout):
                await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.TimeoutError:
            logger.error(f"Timed out waiting for {len(tasks)} timers to stop")
        self._tasks.clear()


class ManualScheduler(Scheduler):
    """Virtual-time scheduler for tests.

    Time only moves when ``advance`` is awaited. Due timers run in
    ``(when, sequence)`` order, including timers that callbacks schedule
    inside the advanced window.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._heap: List[tuple] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: TimerCallback, *args,
                   name: Optional[str] = None) -> TimerHandle:
        handle = TimerHandle(self._now + max(0.0, delay), name)
        heapq.heappush(self._heap, (handle.when, next(self._seq), handle, callback, args))
        return handle

    def cancel_all(self) -> None:
        for _, _, handle, _, _ in self._heap:
            handle._cancelled = True
        self._heap.clear()

    def pending(self) -> int:
        return sum(1 for entry in self._heap if not entry[2].cancelled)

    def pending_names(self) -> List[str]:
        return [entry[2].name for entry in sorted(self._heap) if not entry[2].cancelled]

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._heap and self._heap[0][0] <= target:
            when, _, handle, callback, args = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self._now = max(self._now, when)
            await _invoke(callback, args, handle.name)
        self._now = target

    async def run_until_idle(self, limit: int = 10000) -> None:
        """Run timers until none are left, jumping time forward as needed."""
        runs = 0
        while self._heap:
            when, _, handle, callback, args = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            runs += 1
            if runs > limit:
                raise RuntimeError(f"Scheduler still busy after {limit} timers")
            self._now = max(self._now, when)
            await _invoke(callback, args, handle.name)
