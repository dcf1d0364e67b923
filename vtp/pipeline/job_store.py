"""Bounded job queue with an admission counter.

The store is the single source of truth for "is there room". Occupancy counts
every admitted job until its worker has fully finished with it (queued plus
in flight), so a job leaving the deque does not free capacity; only
release() does.

Usage from the ingest side:

    if not store.try_admit():
        ...  # answer 503, nothing written
    store.enqueue(job)

and from a worker:

    job = store.dequeue()
    try:
        ...
    finally:
        store.release(job)
"""

import logging
import threading
from collections import deque
from pathlib import Path
from typing import Deque, Optional, Set

from vtp.domain.models import Job, QueueStatus
from vtp.infrastructure.storage import resolve_collision


class JobStore:
    """Capacity-bounded FIFO shared by request handlers and workers.

    Args:
        capacity: Maximum number of admitted-but-unfinished jobs. Fixed for
            the lifetime of the process.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._queue: Deque[Job] = deque()
        self._occupancy = 0
        self._closed = False

        # job_id of jobs admitted through enqueue() and not yet released
        self._live_jobs: Set[str] = set()

        # Final names held by live jobs; guarded separately so a slow
        # filesystem check never delays admission
        self._names_lock = threading.Lock()
        self._reserved_names: Set[str] = set()

    @property
    def occupancy(self) -> int:
        with self._lock:
            return self._occupancy

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def try_admit(self) -> bool:
        """Reserve one slot if there is room. No side effects on failure."""
        with self._lock:
            if self._closed or self._occupancy >= self.capacity:
                return False
            self._occupancy += 1
            return True

    def cancel_admission(self):
        """Give back a slot obtained by try_admit() when no job was enqueued."""
        with self._lock:
            if self._occupancy <= 0:
                raise RuntimeError("cancel_admission() without a matching try_admit()")
            self._occupancy -= 1

    def enqueue(self, job: Job):
        """Append an admitted job to the tail and wake one waiting worker."""
        with self._not_empty:
            if len(self._live_jobs) >= self._occupancy:
                raise RuntimeError(f"enqueue() of {job.display_name} without a successful try_admit()")
            self._live_jobs.add(job.job_id)
            self._queue.append(job)
            self._not_empty.notify()

    def dequeue(self, timeout: Optional[float] = None) -> Optional[Job]:
        """Block until a job is available and return it.

        Returns None when the timeout expires, or when the store is closed and
        nothing is left to drain.
        """
        with self._not_empty:
            if not self._not_empty.wait_for(lambda: self._queue or self._closed, timeout=timeout):
                return None
            if self._queue:
                return self._queue.popleft()
            return None

    def release(self, job: Optional[Job] = None):
        """Free the slot held by a finished job.

        A job released twice is ignored so a stray second call can never free
        capacity that belongs to another job.
        """
        with self._lock:
            if job is not None:
                if job.job_id not in self._live_jobs:
                    self.logger.warning(f"release() called twice or for unknown job {job.job_id} ({job.display_name})")
                    return
                self._live_jobs.discard(job.job_id)
            if self._occupancy <= 0:
                raise RuntimeError("release() called with zero occupancy")
            self._occupancy -= 1
        if job is not None:
            self.release_name(job.display_name)

    def claim_name(self, candidate: str, published_dir: Path) -> str:
        """Reserve a final name not used by a live job nor by a published file."""
        with self._names_lock:
            name = resolve_collision(published_dir, candidate, is_taken=self._reserved_names.__contains__)
            self._reserved_names.add(name)
            return name

    def release_name(self, name: str):
        with self._names_lock:
            self._reserved_names.discard(name)

    def is_name_reserved(self, name: str) -> bool:
        with self._names_lock:
            return name in self._reserved_names

    def snapshot(self) -> QueueStatus:
        """Read-only view of the counters."""
        with self._lock:
            queued = len(self._queue)
            return QueueStatus(
                occupancy=self._occupancy,
                capacity=self.capacity,
                queued=queued,
                in_flight=max(0, len(self._live_jobs) - queued),
            )

    def close(self):
        """Stop admitting and wake every waiting worker so it can drain and exit."""
        with self._not_empty:
            self._closed = True
            self._not_empty.notify_all()
