"""
scanner.py
----------

The recursive path discovery engine.

A scan seeds one task per dictionary entry (and HTTP method) under the
target's base path, then lets a fixed pool of asyncio workers drain the
queue.  Whenever a result is classified as a directory, a new generation of
tasks (the whole dictionary again, rooted at the discovered path) is pushed
onto the same queue.  Because the total amount of work is unknown up front,
termination is driven by an outstanding-task counter: every enqueue is paired
with exactly one ``mark_done`` and the queue reports itself drained when that
counter falls back to zero.

A visited set keyed by ``(method, normalized path)`` guarantees each path is
requested at most once per run, which also stops cycles created by
directory entries resolving to paths that were already scanned.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from typing import Deque, Hashable, List, Optional, Sequence, Set

from dirprobe.core import (
    BaseSink,
    Fragment,
    QueueStateError,
    RecursionPolicy,
    ScanContext,
    ScanResult,
    ScanSummary,
    ScanTask,
)
from dirprobe.http_client import HttpExecutor


log = logging.getLogger(__name__)


class TaskQueue:
    """FIFO of scan tasks with WaitGroup-style quiescence detection."""

    def __init__(self) -> None:
        self._items: Deque[ScanTask] = deque()
        self._cond = asyncio.Condition()
        self._outstanding = 0
        self._started = False
        self._drained = False
        self._cancelled = False
        self._wakeup: Optional[asyncio.Task] = None

    @property
    def outstanding(self) -> int:
        """Tasks enqueued but not yet marked done (queued or in flight)."""
        return self._outstanding

    @property
    def pending(self) -> int:
        return len(self._items)

    @property
    def drained(self) -> bool:
        return self._drained

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def enqueue(self, task: ScanTask) -> bool:
        async with self._cond:
            if self._cancelled or self._drained:
                return False
            self._items.append(task)
            self._outstanding += 1
            self._started = True
            self._cond.notify()
            return True

    async def dequeue(self) -> Optional[ScanTask]:
        """Wait for the next task; ``None`` once drained or cancelled."""
        async with self._cond:
            await self._cond.wait_for(lambda: bool(self._items) or self._drained or self._cancelled)
            if self._cancelled or not self._items:
                return None
            return self._items.popleft()

    async def mark_done(self) -> None:
        async with self._cond:
            if self._outstanding <= 0:
                raise QueueStateError("mark_done() called more times than tasks were enqueued")
            self._outstanding -= 1
            if self._outstanding == 0 and self._started:
                self._drained = True
                self._cond.notify_all()

    def cancel(self) -> int:
        """Drop every pending task and wake all waiters. Returns the number dropped.

        Synchronous so it can run from a signal handler; the state change is
        visible to the next ``dequeue`` immediately and blocked waiters are
        woken by a scheduled notification.
        """
        dropped = len(self._items)
        self._items.clear()
        self._outstanding -= dropped
        self._cancelled = True
        if self._outstanding == 0:
            self._drained = True
        self._wakeup = asyncio.get_running_loop().create_task(self._notify_all())
        return dropped

    async def _notify_all(self) -> None:
        async with self._cond:
            self._cond.notify_all()

    async def join(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: self._drained)


class VisitedSet:
    """Paths already enqueued during this run."""

    def __init__(self) -> None:
        self._seen: Set[Hashable] = set()
        self._lock = threading.Lock()

    def add(self, key: Hashable) -> bool:
        """Insert ``key``; ``True`` only if it was not there before."""
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


def should_recurse(result: ScanResult, policy: RecursionPolicy = RecursionPolicy.DIRECTORY) -> bool:
    """Decide whether a completed request opens a new generation of tasks."""
    if result.failed or not result.is_success():
        return False
    if policy is RecursionPolicy.ANY_SUCCESS:
        return True
    return result.task.fragment.is_directory


class Scanner:
    """Drives one scan run with a bounded pool of workers."""

    def __init__(
        self,
        context: ScanContext,
        dictionary: Sequence[Fragment],
        executor: HttpExecutor,
        sink: BaseSink,
    ) -> None:
        self.context = context
        self.dictionary = list(dictionary)
        self.executor = executor
        self.sink = sink
        self._queue: Optional[TaskQueue] = None
        self._visited = VisitedSet()
        self._summary = ScanSummary()

    @property
    def visited(self) -> VisitedSet:
        return self._visited

    async def scan(self) -> ScanSummary:
        self._queue = TaskQueue()
        self._visited = VisitedSet()
        self._summary = ScanSummary()

        seeded = await self._schedule(self.context.base_path, depth=0)
        log.info("Scanning %s%s with %d seed tasks and %d workers",
                 self.context.origin, self.context.base_path, seeded, self.context.threads)
        if seeded == 0:
            return self._summary

        workers: List[asyncio.Task] = [
            asyncio.create_task(self._worker(i), name=f"dirprobe-worker-{i}")
            for i in range(self.context.threads)
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            # A worker crashed or the scan itself was cancelled: stop the rest
            self._queue.cancel()
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        log.info("Scan finished: %d requests, %d found, %d errors%s",
                 self._summary.requests, self._summary.found, self._summary.errors,
                 " (cancelled)" if self._summary.cancelled else "")
        return self._summary

    def cancel(self) -> None:
        """Stop handing out tasks; in-flight requests are allowed to finish."""
        if self._queue is None or self._summary.cancelled:
            return
        log.warning("Cancelling scan, waiting for in-flight requests")
        self._summary.cancelled = True
        dropped = self._queue.cancel()
        log.debug("Dropped %d pending tasks", dropped)

    async def _schedule(self, base_path: str, depth: int) -> int:
        """Enqueue one task per dictionary entry and method under ``base_path``."""
        assert self._queue is not None
        added = 0
        for fragment in self.dictionary:
            for method in self.context.http_methods:
                task = ScanTask(base_path=base_path, fragment=fragment, depth=depth, method=method)
                if not self._visited.add(task.key):
                    log.debug("Skipping already visited %s %s", method, task.path)
                    continue
                if not await self._queue.enqueue(task):
                    return added
                added += 1
        return added

    def _within_depth(self, depth: int) -> bool:
        return self.context.max_depth is None or depth <= self.context.max_depth

    async def _worker(self, worker_id: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            task = await queue.dequeue()
            if task is None:
                log.debug("worker=%d exiting", worker_id)
                return
            try:
                result = await self.executor.execute(task)
                self._count(result)

                if should_recurse(result, self.context.recursion_policy):
                    child_depth = task.depth + 1
                    if self._within_depth(child_depth):
                        child_base = result.path if result.path.endswith("/") else result.path + "/"
                        added = await self._schedule(child_base, child_depth)
                        log.debug("worker=%d found directory %s, queued %d tasks at depth %d",
                                  worker_id, child_base, added, child_depth)
                    else:
                        log.debug("worker=%d not expanding %s: scan depth reached", worker_id, result.path)

                self.sink.record(result)
            finally:
                await queue.mark_done()

    def _count(self, result: ScanResult) -> None:
        self._summary.requests += 1
        if result.failed:
            self._summary.errors += 1
        elif result.status not in self.context.statuses_to_ignore:
            self._summary.found += 1
