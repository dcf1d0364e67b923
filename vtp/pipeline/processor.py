"""Per-job pipeline run by every worker: sanitize → transcode → place → cleanup.

A job always ends with something published unless the filesystem itself
fails: when ffmpeg fails (non-zero exit, missing input, launch failure,
timeout, shutdown) the untouched original is published instead.
"""

import logging
import threading
import time
from pathlib import Path
from typing import List, Optional

from vtp.domain.events import JobCompleted, JobFailed, JobFellBack, JobStarted
from vtp.domain.models import Job, JobStatus, TranscodeOutcome
from vtp.infrastructure.event_bus import EventBus
from vtp.infrastructure.ffmpeg import FFmpegAdapter
from vtp.infrastructure.storage import TRANSCODED_SUFFIX, publish_file, safe_unlink, sanitize_filename, transcoded_name


class VideoProcessor:
    """Turns one dequeued job into a published artifact.

    Args:
        ffmpeg_adapter: Transcode invoker.
        event_bus: Receives JobStarted / JobCompleted / JobFellBack / JobFailed.
        temp_dir: Staging area; transcoder outputs are written here too.
        published_dir: Final store served by the listing endpoint.
        shutdown_event: Set on process shutdown; interrupts a running ffmpeg.
    """

    def __init__(
        self,
        ffmpeg_adapter: FFmpegAdapter,
        event_bus: EventBus,
        temp_dir: Path,
        published_dir: Path,
        shutdown_event: Optional[threading.Event] = None,
        debug: bool = False,
    ):
        self.ffmpeg_adapter = ffmpeg_adapter
        self.event_bus = event_bus
        self.temp_dir = temp_dir
        self.published_dir = published_dir
        self.shutdown_event = shutdown_event
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _output_path_for(self, job: Job) -> Path:
        # job_id keeps it unique and short whatever the display name
        return self.temp_dir / f"{job.job_id}{TRANSCODED_SUFFIX}.part"

    def _sanitize_staged(self, job: Job) -> Path:
        """Rename the staged artifact to its sanitized form inside the temp area."""
        staged = job.source_path
        sanitized = sanitize_filename(staged.name)
        if sanitized == staged.name:
            return staged
        target = staged.with_name(sanitized)
        if target.exists():
            target = staged.with_name(f"{job.job_id}_{sanitized}")
        staged.rename(target)
        job.source_path = target
        if self.debug:
            self.logger.debug(f"SANITIZE: {staged.name} -> {target.name}")
        return target

    def process_video_file(self, job: Job) -> Job:
        """Run the pipeline for one job. Never raises for per-job faults."""
        filename = job.display_name
        start_time = time.monotonic()
        temp_paths: List[Path] = [job.source_path]

        job.status = JobStatus.PROCESSING
        self.event_bus.publish(JobStarted(job=job))
        if self.debug:
            self.logger.info(f"PROCESS_START: {filename} (thread {threading.get_ident()})")

        try:
            staged = self._sanitize_staged(job)
            temp_paths.append(staged)
            output_path = self._output_path_for(job)
            temp_paths.append(output_path)

            result = self.ffmpeg_adapter.transcode(staged, output_path, shutdown_event=self.shutdown_event)

            if result.succeeded:
                job.published_path = publish_file(output_path, self.published_dir, transcoded_name(job.display_name))
                safe_unlink(staged)
                job.status = JobStatus.COMPLETED
                self.logger.info(f"Published {job.published_path.name} (transcoded, {result.elapsed_s:.1f}s)")
                self.event_bus.publish(JobCompleted(job=job))
            else:
                reason = result.error_message or result.outcome.value
                if result.outcome == TranscodeOutcome.LAUNCH_FAILED:
                    self.logger.error(f"Transcoder unavailable for {filename}: {reason}")
                else:
                    self.logger.warning(f"Transcode failed for {filename}: {reason}")
                    if result.output:
                        self.logger.debug(f"FFMPEG_OUTPUT {filename}:\n{result.output}")
                safe_unlink(output_path)
                if not staged.exists():
                    raise FileNotFoundError(f"Staged file vanished: {staged}")
                job.published_path = publish_file(staged, self.published_dir, job.fallback_name or job.display_name)
                job.status = JobStatus.FALLBACK
                job.error_message = reason
                self.logger.info(f"Published {job.published_path.name} (original kept: {reason})")
                self.event_bus.publish(JobFellBack(job=job, reason=reason))

        except Exception as e:
            job.status = JobStatus.FAILED
            job.error_message = f"Exception: {e}"
            self.logger.error(f"Exception processing {filename}: {e}")
            self.event_bus.publish(JobFailed(job=job, error_message=job.error_message))

        finally:
            for path in temp_paths:
                if path != job.published_path:
                    safe_unlink(path)
            job.duration_seconds = time.monotonic() - start_time
            if self.debug:
                self.logger.info(f"PROCESS_END: {filename} status={job.status.value} elapsed={job.duration_seconds:.2f}s")

        return job
