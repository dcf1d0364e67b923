import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field

class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FALLBACK = "FALLBACK"  # Original published after transcode failure
    FAILED = "FAILED"

class TranscodeOutcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    EXITED_NONZERO = "EXITED_NONZERO"
    TIMED_OUT = "TIMED_OUT"
    INTERRUPTED = "INTERRUPTED"
    LAUNCH_FAILED = "LAUNCH_FAILED"  # ffmpeg never started (missing binary, permissions)

class UploadOutcome(str, Enum):
    ACCEPTED = "ACCEPTED"
    DUPLICATE = "DUPLICATE"
    BACKPRESSURE = "BACKPRESSURE"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"  # Retry ceiling reached while the queue stayed full

class Job(BaseModel):
    """One uploaded file, from admission until its temp artifacts are gone."""

    source_path: Path
    display_name: str
    # Published name when the original is kept; display_name otherwise
    fallback_name: Optional[str] = None
    original_name: str = ""
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    size_bytes: int = 0
    fingerprint: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    status: JobStatus = JobStatus.QUEUED
    published_path: Optional[Path] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None

class TranscodeResult(BaseModel):
    outcome: TranscodeOutcome
    returncode: Optional[int] = None
    output: str = ""
    error_message: Optional[str] = None
    elapsed_s: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome == TranscodeOutcome.SUCCEEDED

    @property
    def launched(self) -> bool:
        return self.outcome != TranscodeOutcome.LAUNCH_FAILED

class QueueStatus(BaseModel):
    occupancy: int
    capacity: int
    queued: int = 0
    in_flight: int = 0

    def as_text(self) -> str:
        return f"{self.occupancy}/{self.capacity}"
