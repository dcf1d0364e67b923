"""Admission of uploaded files into the JobStore.

Order of operations for one upload:

1. duplicate check (no job store mutation on a hit),
2. collision-free final name reserved against published files and live jobs,
   so two uploads never race for one name; the reserved name carries the
   transcoder's .mp4 extension,
3. admission (lock-only; a refusal writes nothing and returns the name),
4. staging into the temp area (the single filesystem write) and enqueue.

Any failure after a successful admission gives the slot, the name and the
dedup claim back before the error propagates.
"""

import logging
import shutil
import uuid
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional

from pydantic import BaseModel

from vtp.domain.events import AdmissionRejected, DuplicateSkipped, JobAdmitted, QueueChanged
from vtp.domain.models import Job
from vtp.infrastructure.event_bus import EventBus
from vtp.infrastructure.storage import safe_suffix, safe_unlink, sanitize_filename, transcoded_name
from vtp.pipeline.dedup import ContentDuplicateDetector, DuplicateDetector, NoDuplicateDetector
from vtp.pipeline.job_store import JobStore

COPY_BUFFER_SIZE = 1024 * 1024


class IngestStatus(str, Enum):
    QUEUED = "queued"
    ALREADY_EXISTS = "already_exists"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    QUEUE_FULL = "queue_full"


class IngestResult(BaseModel):
    status: IngestStatus
    filename: str
    name: Optional[str] = None
    job_id: Optional[str] = None
    occupancy: int = 0
    capacity: int = 0

    @property
    def accepted(self) -> bool:
        return self.status == IngestStatus.QUEUED


def fallback_name_for(display_name: str, sanitized: str) -> str:
    """Name for publishing the original: claimed stem, uploaded extension."""
    suffix = safe_suffix(display_name)
    stem = display_name[: len(display_name) - len(suffix)] if suffix else display_name
    return stem + safe_suffix(sanitized)


def staging_name(job_id: str, filename: str) -> str:
    # Bounded length whatever the client sent; the display name lives on the Job
    return f"{job_id}{safe_suffix(sanitize_filename(filename))}"


class IngestService:
    """Admission gate in front of the JobStore.

    Args:
        store: Shared job store.
        event_bus: Receives JobAdmitted / AdmissionRejected / DuplicateSkipped.
        published_dir: Final store, consulted for name collisions.
        temp_dir: Staging area.
        detector: Duplicate detection strategy (defaults to none).
    """

    def __init__(
        self,
        store: JobStore,
        event_bus: EventBus,
        published_dir: Path,
        temp_dir: Path,
        detector: Optional[DuplicateDetector] = None,
    ):
        self.store = store
        self.event_bus = event_bus
        self.published_dir = published_dir
        self.temp_dir = temp_dir
        self.detector = detector or NoDuplicateDetector()
        self.logger = logging.getLogger(__name__)

    def submit(self, filename: str, stream: BinaryIO) -> IngestResult:
        """Admit one upload. Raises on unexpected (non-backpressure) failures."""
        filename = filename or "upload"
        detector = self.detector

        key = detector.key_for(filename, stream)
        if not detector.claim(key):
            self.logger.info(f"Duplicate upload skipped ({detector.name}): {filename}")
            self.event_bus.publish(DuplicateSkipped(filename=filename, strategy=detector.name))
            return IngestResult(status=IngestStatus(detector.duplicate_status), filename=filename)

        try:
            sanitized = sanitize_filename(filename)
            display_name = self.store.claim_name(transcoded_name(sanitized), self.published_dir)
        except Exception:
            detector.discard(key)
            raise

        if not self.store.try_admit():
            self.store.release_name(display_name)
            detector.discard(key)
            status = self.store.snapshot()
            # Expected backpressure, not an error
            self.logger.info(f"Queue full ({status.as_text()}), rejected: {filename}")
            self.event_bus.publish(AdmissionRejected(filename=filename, status=status))
            return IngestResult(
                status=IngestStatus.QUEUE_FULL,
                filename=filename,
                occupancy=status.occupancy,
                capacity=status.capacity,
            )

        staged = None
        try:
            job_id = uuid.uuid4().hex
            staged = self.temp_dir / staging_name(job_id, filename)
            stream.seek(0)
            with open(staged, "xb") as out:
                shutil.copyfileobj(stream, out, COPY_BUFFER_SIZE)
            job = Job(
                job_id=job_id,
                source_path=staged,
                display_name=display_name,
                fallback_name=fallback_name_for(display_name, sanitized),
                original_name=filename,
                size_bytes=staged.stat().st_size,
                fingerprint=key if isinstance(detector, ContentDuplicateDetector) else None,
            )
            self.store.enqueue(job)
        except Exception:
            safe_unlink(staged)
            self.store.release_name(display_name)
            self.store.cancel_admission()
            detector.discard(key)
            raise

        status = self.store.snapshot()
        self.logger.info(f"Queued {filename} as {display_name} ({job.size_bytes} bytes, {status.as_text()})")
        self.event_bus.publish(JobAdmitted(job=job))
        self.event_bus.publish(QueueChanged(status=status))
        return IngestResult(
            status=IngestStatus.QUEUED,
            filename=filename,
            name=display_name,
            job_id=job.job_id,
            occupancy=status.occupancy,
            capacity=status.capacity,
        )
