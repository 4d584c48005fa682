"""
Schedulers - timers and background tasks for the payment state machine

The state machine never calls asyncio directly. It asks a scheduler for
the current time, for a cancellable timer, and to run a coroutine in the
background. Production uses the running event loop; tests use
ManualScheduler and advance virtual time.
"""

import asyncio
import heapq
import itertools
import logging
from typing import Any, Callable, Coroutine, List, Optional, Protocol, Set, Tuple

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        """Stop the timer; a no-op if it already fired or was cancelled"""


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(max(0.0, delay), callback)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        # Keep a strong reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


class ManualTimer:
    """Timer registered with a ManualScheduler"""

    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Virtual-time scheduler.

    Nothing happens until advance() is awaited: timers fire in due order
    (ties in registration order) and background tasks spawned by a timer
    are given a chance to run before the next timer fires.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._counter = itertools.count()
        self._queue: List[Tuple[float, int, ManualTimer]] = []
        self._tasks: Set[asyncio.Task] = set()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self._now + max(0.0, delay), callback)
        heapq.heappush(self._queue, (timer.due, next(self._counter), timer))
        return timer

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_timers(self) -> int:
        """Timers that are scheduled and not cancelled"""
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    @property
    def pending_tasks(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def settle(self, max_iterations: int = 50) -> None:
        """Let spawned tasks run until they finish or block on something external"""
        for _ in range(max_iterations):
            if not any(not task.done() for task in self._tasks):
                return
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, firing every timer that falls due"""
        target = self._now + seconds
        await self.settle()

        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = due
            timer.fired = True
            timer.callback()
            await self.settle()

        self._now = target

    async def run_until_idle(self, limit: Optional[float] = None) -> None:
        """Fire timers until none remain (or virtual time passes limit)"""
        await self.settle()
        while self._queue:
            due = self._queue[0][0]
            if limit is not None and due > limit:
                break
            await self.advance(due - self._now)
