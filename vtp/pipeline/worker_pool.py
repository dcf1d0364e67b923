import logging
import threading
from typing import Callable, List, Optional

from vtp.domain.events import QueueChanged
from vtp.domain.models import Job
from vtp.infrastructure.event_bus import EventBus
from vtp.pipeline.job_store import JobStore


class WorkerPool:
    """Fixed number of threads draining the JobStore.

    Each worker blocks in dequeue() until a job arrives, runs it and releases
    its slot in a finally block, so no exit path can leak occupancy. The pool
    size is read once; there is no resizing.
    """

    def __init__(
        self,
        store: JobStore,
        process: Callable[[Job], object],
        workers: int,
        event_bus: Optional[EventBus] = None,
        name: str = "vtp-worker",
    ):
        if workers <= 0:
            raise ValueError("workers must be > 0")
        self.store = store
        self.process = process
        self.workers = workers
        self.event_bus = event_bus
        self.name = name
        self.logger = logging.getLogger(__name__)
        self._threads: List[threading.Thread] = []
        self._processed = 0
        self._stats_lock = threading.Lock()

    @property
    def processed_count(self) -> int:
        with self._stats_lock:
            return self._processed

    def start(self):
        if self._threads:
            raise RuntimeError("WorkerPool already started")
        for i in range(self.workers):
            thread = threading.Thread(target=self._run, name=f"{self.name}-{i + 1}", daemon=True)
            thread.start()
            self._threads.append(thread)
        self.logger.info(f"Worker pool started: {self.workers} workers")
        return self

    def _run(self):
        while True:
            job = self.store.dequeue()
            if job is None:
                # Store closed and drained
                return
            try:
                self.process(job)
            except Exception as e:
                # Processor contains its own faults; this guards the loop itself
                self.logger.exception(f"Worker crashed on {job.display_name}: {e}")
            finally:
                self.store.release(job)
                with self._stats_lock:
                    self._processed += 1
                if self.event_bus is not None:
                    self.event_bus.publish(QueueChanged(status=self.store.snapshot()))

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Close the store and wait for workers. True when every thread exited."""
        self.store.close()
        for thread in self._threads:
            thread.join(timeout=timeout)
        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            self.logger.warning(f"Workers still running after stop: {', '.join(alive)}")
            return False
        self.logger.info("Worker pool stopped")
        return True
