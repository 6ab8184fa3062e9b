"""In-memory priority + delay queue for reconciliation runs (single process).

Ready items live in a heap keyed by ``(priority, seq)``; delayed items (retries
of failed scheduled runs) wait in a second heap keyed by ``ready_at`` and are
promoted on dequeue. Keeping the heaps apart means a far-future high priority
retry never blocks a lower priority run that is ready now.

Jobs are de-duplicated by ``job.key()``: while a run for a period and trigger
is waiting, enqueuing the same key again returns the existing item.
"""
from __future__ import annotations

import heapq
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from invoice_recon.config import QUEUE_SETTINGS
from invoice_recon.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class QueueItem:
    job: Any
    priority_label: str
    priority_value: int
    enqueued_at: float
    ready_at: float
    seq: int


class RunQueue:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        priorities = QUEUE_SETTINGS.get("priorities", {})
        self._priority_map: dict[str, int] = dict(priorities) if isinstance(priorities, dict) else {"manual": 0}
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 100))  # type: ignore[arg-type]
        self._max_in_memory = int(QUEUE_SETTINGS.get("max_in_memory", 1000))  # type: ignore[arg-type]
        self._clock = clock
        self._cv = threading.Condition(threading.RLock())
        self._ready: list[tuple[int, int, QueueItem]] = []
        self._delayed: list[tuple[float, int, int, QueueItem]] = []
        self._keys: dict[str, QueueItem] = {}
        self._seq = 0
        self._shutdown = False

    def _promote_due(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, priority_value, seq, item = heapq.heappop(self._delayed)
            heapq.heappush(self._ready, (priority_value, seq, item))

    def _wait_seconds(self, remaining: Optional[float]) -> Optional[float]:
        """How long to sleep: until the next delayed item, capped by the caller's timeout."""
        wait = None
        if self._delayed:
            wait = max(0.0, self._delayed[0][0] - self._clock())
        if remaining is not None:
            wait = remaining if wait is None else min(wait, remaining)
        return wait

    @staticmethod
    def _key(job: Any) -> Optional[str]:
        key_fn = getattr(job, "key", None)
        return key_fn() if callable(key_fn) else None

    def enqueue(self, job: Any, *, priority: str = "manual", delay_seconds: float = 0.0) -> QueueItem:
        with self._cv:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if priority not in self._priority_map:
                raise ValueError(f"Unknown priority '{priority}'")
            key = self._key(job)
            if key is not None and key in self._keys:
                logger.info("Duplicate job ignored", key=key)
                return self._keys[key]
            if self.depth() >= self._max_in_memory:
                raise OverflowError("Queue capacity exceeded")

            now = self._clock()
            self._seq += 1
            item = QueueItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now,
                ready_at=now + max(0.0, delay_seconds),
                seq=self._seq,
            )
            if item.ready_at <= now:
                heapq.heappush(self._ready, (item.priority_value, item.seq, item))
            else:
                heapq.heappush(self._delayed, (item.ready_at, item.priority_value, item.seq, item))
            if key is not None:
                self._keys[key] = item
            if self.depth() >= self._warn_depth:
                logger.warning("Queue depth warning", depth=self.depth())
            self._cv.notify()
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Pop the next ready job; None when non-blocking and empty, on timeout, or after shutdown."""
        deadline = None if timeout is None else self._clock() + timeout
        with self._cv:
            while True:
                if self._shutdown:
                    return None
                self._promote_due()
                if self._ready:
                    _, _, item = heapq.heappop(self._ready)
                    key = self._key(item.job)
                    if key is not None:
                        self._keys.pop(key, None)
                    return item.job
                if not block:
                    return None
                remaining = None if deadline is None else deadline - self._clock()
                if remaining is not None and remaining <= 0:
                    return None
                self._cv.wait(timeout=self._wait_seconds(remaining))

    def shutdown(self) -> None:
        with self._cv:
            self._shutdown = True
            self._cv.notify_all()

    def purge(self) -> None:
        with self._cv:
            self._ready.clear()
            self._delayed.clear()
            self._keys.clear()
            self._cv.notify_all()

    def depth(self) -> int:
        return len(self._ready) + len(self._delayed)

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._cv:
            return {
                "depth": self.depth(),
                "ready": len(self._ready),
                "delayed": len(self._delayed),
                "shutdown": self._shutdown,
            }


__all__ = ["RunQueue", "QueueItem"]
