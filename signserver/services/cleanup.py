# signserver/services/cleanup.py
from __future__ import annotations
from threading import Condition, Thread
from typing import Callable, Dict, List, Optional, Tuple
import heapq
import itertools
import logging
import time

logger = logging.getLogger("signserver.jobs")


class CleanupScheduler:
    """Delayed per-job callbacks served by a single thread.

    Rescheduling or cancelling a job leaves its old heap entry in place;
    the worker skips entries whose sequence number is no longer current.
    """

    def __init__(self, callback: Callable[[int], None], clock: Callable[[], float] = time.monotonic):
        self._callback = callback
        self._clock = clock
        self._heap: List[Tuple[float, int, int]] = []
        self._current: Dict[int, int] = {}
        self._seq = itertools.count()
        self._cond = Condition()
        self._closed = False
        self._thread: Optional[Thread] = None

    def __len__(self) -> int:
        with self._cond:
            return len(self._current)

    def __contains__(self, job_id: int) -> bool:
        with self._cond:
            return job_id in self._current

    def schedule(self, job_id: int, delay: float) -> bool:
        with self._cond:
            if self._closed:
                return False
            seq = next(self._seq)
            self._current[job_id] = seq
            heapq.heappush(self._heap, (self._clock() + delay, seq, job_id))
            if self._thread is None:
                self._thread = Thread(target=self._loop, name="job-cleanup", daemon=True)
                self._thread.start()
            self._cond.notify()
        return True

    def cancel(self, job_id: int) -> None:
        with self._cond:
            self._current.pop(job_id, None)

    def shutdown(self) -> None:
        with self._cond:
            self._closed = True
            self._heap.clear()
            self._current.clear()
            self._cond.notify_all()

    def _next_due(self) -> Optional[int]:
        """Wait for the next live entry to come due; None once shut down."""
        with self._cond:
            while not self._closed:
                while self._heap and self._current.get(self._heap[0][2]) != self._heap[0][1]:
                    heapq.heappop(self._heap)
                if not self._heap:
                    self._cond.wait()
                    continue
                due, _, job_id = self._heap[0]
                remaining = due - self._clock()
                if remaining > 0:
                    self._cond.wait(remaining)
                    continue
                heapq.heappop(self._heap)
                del self._current[job_id]
                return job_id
            return None

    def _loop(self) -> None:
        while True:
            job_id = self._next_due()
            if job_id is None:
                return
            try:
                self._callback(job_id)
            except Exception:
                logger.exception("job_id=%s cleanup failed", job_id)
