"""Domain events for the ingest and transcode pipeline.

Events represent state changes that flow through the EventBus, decoupling the
ingest endpoint and worker pool from logging and the terminal dashboard.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from pydantic import BaseModel
from .models import Job, QueueStatus


class Event(BaseModel):
    """Base class for all domain events."""

    pass

class JobEvent(Event):
    """Base class for events related to a specific job."""

    job: Job


class JobAdmitted(JobEvent):
    """Emitted after a staged upload has been enqueued."""

    pass


class JobStarted(JobEvent):
    """Emitted when a worker picks a job up."""

    pass


class JobCompleted(JobEvent):
    """Emitted when the transcoded output was published."""

    pass


class JobFellBack(JobEvent):
    """Emitted when the original upload was published because transcoding failed."""

    reason: str


class JobFailed(JobEvent):
    """Emitted when nothing could be published for a job."""

    error_message: str


class AdmissionRejected(Event):
    """Emitted when an upload was refused because the queue is full."""

    filename: str
    status: QueueStatus


class DuplicateSkipped(Event):
    """Emitted when an upload matched an existing dedup record."""

    filename: str
    strategy: str


class QueueChanged(Event):
    """Emitted whenever occupancy moves (admission or release)."""

    status: QueueStatus


class ServiceStarted(Event):
    """Emitted once the consumer is listening."""

    url: str
    upload_dir: Path
    workers: int


class ActionMessage(Event):
    """Free-form feedback line for the dashboard."""

    message: str
