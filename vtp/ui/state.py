import threading
from datetime import datetime
from collections import deque
from pathlib import Path
from typing import List, Optional
from vtp.domain.models import Job, JobStatus

class UIState:
    """Thread-safe state manager for the consumer dashboard."""

    def __init__(self, activity_feed_max_items: int = 8):
        self._lock = threading.RLock()

        # Counters
        self.admitted_count = 0
        self.completed_count = 0
        self.fallback_count = 0
        self.failed_count = 0
        self.rejected_count = 0
        self.duplicate_count = 0

        # Queue
        self.occupancy = 0
        self.capacity = 0

        # Job lists
        self.active_jobs: List[Job] = []
        self.recent_jobs = deque(maxlen=activity_feed_max_items)

        # Service
        self.service_url = ""
        self.upload_dir: Optional[Path] = None
        self.workers = 0
        self.start_time: Optional[datetime] = None
        self.ui_title = "VTP"

        self.last_action: str = ""
        self.last_action_time: Optional[datetime] = None

    @property
    def processed_count(self) -> int:
        with self._lock:
            return self.completed_count + self.fallback_count + self.failed_count

    def set_queue(self, occupancy: int, capacity: int):
        with self._lock:
            self.occupancy = occupancy
            self.capacity = capacity

    def add_active_job(self, job: Job):
        with self._lock:
            if all(j.job_id != job.job_id for j in self.active_jobs):
                self.active_jobs.append(job)

    def remove_active_job(self, job: Job):
        with self._lock:
            self.active_jobs = [j for j in self.active_jobs if j.job_id != job.job_id]

    def add_finished_job(self, job: Job):
        """Counts a job by its final status and moves it to the activity feed."""
        with self._lock:
            if job.status == JobStatus.COMPLETED:
                self.completed_count += 1
            elif job.status == JobStatus.FALLBACK:
                self.fallback_count += 1
            else:
                self.failed_count += 1
            self.recent_jobs.appendleft(job)
            self.remove_active_job(job)

    def set_last_action(self, action: str):
        with self._lock:
            self.last_action = action
            self.last_action_time = datetime.now()

    def get_last_action(self) -> str:
        """Get last action message (clears after 60 seconds)."""
        with self._lock:
            if self.last_action and self.last_action_time:
                elapsed = (datetime.now() - self.last_action_time).total_seconds()
                if elapsed > 60:
                    self.last_action = ""
                    self.last_action_time = None
            return self.last_action
