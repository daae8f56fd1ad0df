# workqueue.py
"""Deduplicating, rate-limited work queue for reconcile keys.

Semantics follow the client-go workqueue:
- a key is queued at most once no matter how many times it's added;
- a key handed out by get() is not handed out again until done() is called,
  and an add() while it's being processed re-queues it on done();
- add_rate_limited() delays a key exponentially per consecutive failure,
  forget() resets that.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple

log = logging.getLogger(__name__)


def make_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def split_key(key: str) -> Tuple[str, str]:
    namespace, sep, name = key.partition("/")
    if not sep:
        return "", key
    return namespace, name


class ItemExponentialFailureRateLimiter:
    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        # cap the exponent so 2**exp can't overflow a float
        delay = self.base_delay * (2 ** min(exp, 62))
        return min(delay, self.max_delay)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class WorkQueue:
    def __init__(self, rate_limiter: Optional[ItemExponentialFailureRateLimiter] = None):
        self.rate_limiter = rate_limiter or ItemExponentialFailureRateLimiter()
        self._cond = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._waiting: List[Tuple[float, int, Hashable]] = []
        self._waiting_at: Dict[Hashable, float] = {}
        self._seq = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, item: Hashable) -> None:
        with self._cond:
            self._add_locked(item)

    def _add_locked(self, item: Hashable) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add_after(self, item: Hashable, delay: float) -> None:
        if delay <= 0:
            self.add(item)
            return
        ready_at = time.monotonic() + delay
        with self._cond:
            if self._shutting_down:
                return
            current = self._waiting_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._waiting_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), item))
            self._cond.notify()

    def add_rate_limited(self, item: Hashable) -> None:
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)

    def _promote_ready_locked(self, now: float) -> None:
        while self._waiting and self._waiting[0][0] <= now:
            ready_at, _, item = heapq.heappop(self._waiting)
            if self._waiting_at.get(item) != ready_at:
                continue  # superseded by an earlier add_after
            del self._waiting_at[item]
            self._add_locked(item)

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Block until a key is ready. Returns None on shutdown or timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                now = time.monotonic()
                self._promote_ready_locked(now)
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item
                if self._shutting_down:
                    return None

                wait: Optional[float] = None
                if self._waiting:
                    wait = max(0.0, self._waiting[0][0] - now)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, item: Hashable) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()


# ─────────────────────────────────────────────
# Workers
# ─────────────────────────────────────────────
def process_next(queue: WorkQueue, reconcile: Callable, timeout: Optional[float] = None) -> bool:
    """Take one key off the queue and reconcile it. Returns False on shutdown/timeout."""
    key = queue.get(timeout=timeout)
    if key is None:
        return False
    try:
        try:
            result = reconcile(key)
        except Exception as e:
            log.error("%s: reconcile failed (retries=%d): %s", key, queue.num_requeues(key), e)
            queue.add_rate_limited(key)
            return True

        if result.requeue_after:
            queue.forget(key)
            queue.add_after(key, result.requeue_after)
        elif result.requeue:
            queue.add_rate_limited(key)
        else:
            queue.forget(key)
        return True
    finally:
        queue.done(key)


def run_worker(queue: WorkQueue, reconcile: Callable) -> None:
    while process_next(queue, reconcile):
        pass
