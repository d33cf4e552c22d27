from __future__ import annotations
from typing import Callable, Dict, List, Optional, Protocol, Tuple
import asyncio
import heapq
import itertools


DebounceKey = Tuple[str, str, str]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """
    Schedules on the given loop, or on the loop running at construction.
    Building one outside a running loop without ``loop`` raises RuntimeError.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(delay, callback)


class _ManualHandle:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual-clock scheduler; nothing runs until ``advance`` is called."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self._heap: List[Tuple[float, int, _ManualHandle]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(self.now + max(delay, 0.0), callback)
        heapq.heappush(self._heap, (handle.due, next(self._seq), handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._heap if not h.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running due callbacks in order. Returns how many ran."""
        target = self.now + seconds
        ran = 0
        while self._heap and self._heap[0][0] <= target:
            due, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self.now = due
            handle.callback()
            ran += 1
        self.now = target
        return ran


class DebounceRegistry:
    """
    Last-write-wins timers keyed by (form id, field id, event kind).

    Scheduling under a key that already has a pending timer cancels the old
    timer first, so a burst of events produces a single callback.
    """

    def __init__(self, scheduler: Scheduler):
        self.scheduler = scheduler
        self._timers: Dict[DebounceKey, TimerHandle] = {}

    def schedule(self, key: DebounceKey, delay: float, callback: Callable[[], None]) -> None:
        self.cancel(key)
        handle: Optional[TimerHandle] = None

        def fire() -> None:
            if self._timers.get(key) is handle:
                del self._timers[key]
            callback()

        handle = self.scheduler.call_later(delay, fire)
        self._timers[key] = handle

    def cancel(self, key: DebounceKey) -> bool:
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_form(self, form_id: str) -> int:
        keys = [k for k in self._timers if k[0] == form_id]
        for k in keys:
            self.cancel(k)
        return len(keys)

    def clear(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    @property
    def pending(self) -> int:
        return len(self._timers)

    def __contains__(self, key: object) -> bool:
        return key in self._timers
