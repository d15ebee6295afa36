# signserver/core/registry.py
from __future__ import annotations
from dataclasses import replace
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Optional
import time

from .errors import DuplicateJobError, JobNotFoundError
from .models import Job, JobState


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class JobIdAllocator:
    """Millisecond timestamps, bumped past the last id so two jobs never share one."""

    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._clock = clock
        self._last = 0
        self._lock = Lock()

    def next_id(self) -> int:
        with self._lock:
            candidate = self._clock()
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return candidate


class JobRegistry:
    """In-memory job table shared by request handlers and signer workers.

    Every access goes through one lock. Callers get copies, never the
    stored Job, so a reader can't see a half-applied transition.
    """

    def __init__(self) -> None:
        self._jobs: Dict[int, Job] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: int) -> bool:
        with self._lock:
            return job_id in self._jobs

    def create(self, job_id: int) -> Job:
        with self._lock:
            if job_id in self._jobs:
                raise DuplicateJobError(job_id)
            job = Job(id=job_id)
            self._jobs[job_id] = job
            return replace(job)

    def get(self, job_id: int) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return replace(job)

    def mark_terminal(
        self,
        job_id: int,
        success: bool,
        error: str = "",
        artifact: Optional[Path] = None,
    ) -> Job:
        if not success and not error:
            raise ValueError("a failed job needs an error message")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.processing = False
            job.success = success
            job.error = "" if success else error
            job.artifact = artifact if success else None
            return replace(job)

    def claim(self, job_id: int) -> Job:
        """Look up a job and, if it succeeded, remove it in the same step.

        At most one caller ever receives a succeeded job from here.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.state is JobState.succeeded:
                del self._jobs[job_id]
            return replace(job)

    def remove(self, job_id: int) -> Optional[Job]:
        """Drop a job; returns None when it was already gone."""
        with self._lock:
            return self._jobs.pop(job_id, None)
