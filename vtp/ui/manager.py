from datetime import datetime
from vtp.infrastructure.event_bus import EventBus
from vtp.ui.state import UIState
from vtp.domain.events import (
    JobAdmitted, JobStarted, JobCompleted, JobFellBack, JobFailed,
    AdmissionRejected, DuplicateSkipped, QueueChanged, ServiceStarted, ActionMessage,
)

class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(ServiceStarted, self.on_service_started)
        self.bus.subscribe(JobAdmitted, self.on_job_admitted)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobCompleted, self.on_job_finished)
        self.bus.subscribe(JobFellBack, self.on_job_finished)
        self.bus.subscribe(JobFailed, self.on_job_finished)
        self.bus.subscribe(AdmissionRejected, self.on_admission_rejected)
        self.bus.subscribe(DuplicateSkipped, self.on_duplicate_skipped)
        self.bus.subscribe(QueueChanged, self.on_queue_changed)
        self.bus.subscribe(ActionMessage, self.on_action_message)

    def on_service_started(self, event: ServiceStarted):
        with self.state._lock:
            self.state.service_url = event.url
            self.state.upload_dir = event.upload_dir
            self.state.workers = event.workers
            self.state.start_time = datetime.now()

    def on_job_admitted(self, event: JobAdmitted):
        with self.state._lock:
            self.state.admitted_count += 1

    def on_job_started(self, event: JobStarted):
        self.state.add_active_job(event.job)

    def on_job_finished(self, event):
        self.state.add_finished_job(event.job)

    def on_admission_rejected(self, event: AdmissionRejected):
        with self.state._lock:
            self.state.rejected_count += 1
        self.state.set_queue(event.status.occupancy, event.status.capacity)
        self.state.set_last_action(f"Queue full, rejected {event.filename}")

    def on_duplicate_skipped(self, event: DuplicateSkipped):
        with self.state._lock:
            self.state.duplicate_count += 1
        self.state.set_last_action(f"Duplicate ({event.strategy}): {event.filename}")

    def on_queue_changed(self, event: QueueChanged):
        self.state.set_queue(event.status.occupancy, event.status.capacity)

    def on_action_message(self, event: ActionMessage):
        self.state.set_last_action(event.message)
