"""Producer worker: pushes every file of one source folder to the consumer.

Files are sent one at a time. A 503 reply is backpressure: the same file is
retried after an exponential, jittered delay until the retry ceiling is hit.
Any other failure is final for that file and the scan moves on.
"""

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple

import requests
from pydantic import BaseModel

from vtp.config.models import ProducerConfig
from vtp.domain.models import UploadOutcome
from vtp.infrastructure.file_scanner import FileScanner
from vtp.producer.backoff import BackoffSchedule

UPLOAD_PATH = "/upload"
FILE_FIELD = "file"
CHUNK_SIZE = 64 * 1024
LINE_FEED = b"\r\n"

BACKPRESSURE_STATUS = 503
ACCEPTED_STATUSES = {"queued"}
DUPLICATE_STATUSES = {"already_exists", "skipped_duplicate"}


class FolderSummary(BaseModel):
    folder: Path
    accepted: int = 0
    duplicate: int = 0
    failed: int = 0
    abandoned: int = 0

    @property
    def total(self) -> int:
        return self.accepted + self.duplicate + self.failed + self.abandoned

    def record(self, outcome: UploadOutcome):
        if outcome == UploadOutcome.ACCEPTED:
            self.accepted += 1
        elif outcome == UploadOutcome.DUPLICATE:
            self.duplicate += 1
        elif outcome == UploadOutcome.ABANDONED:
            self.abandoned += 1
        else:
            self.failed += 1


def _header_filename(name: str) -> str:
    return name.replace("\r", "").replace("\n", "").replace('"', "%22")


def multipart_body(path: Path, boundary: str, field: str = FILE_FIELD, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yields one multipart/form-data document holding the raw bytes of path.

    The file is read chunk by chunk while the request is being sent, so the
    whole upload never sits in memory.
    """
    head = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="{field}"; filename="{_header_filename(path.name)}"\r\n'
        "Content-Type: application/octet-stream\r\n"
        "\r\n"
    )
    yield head.encode("utf-8")
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            yield chunk
    yield LINE_FEED + f"--{boundary}--".encode("ascii") + LINE_FEED


class UploadClient:
    """Uploads the files of one folder, honoring backpressure.

    Args:
        folder: Source folder; scanned once, not watched.
        base_url: Consumer address, e.g. http://localhost:8080.
        config: Producer settings (backoff, retry ceiling, timeouts, extensions).
        session: requests session; one per client since sessions are not shared
            across threads.
        stop_event: Interrupts backoff waits and stops the scan.
        sleep: Delay function in seconds; defaults to an interruptible wait on
            stop_event.
    """

    def __init__(
        self,
        folder: Path,
        base_url: str,
        config: ProducerConfig,
        session: Optional[requests.Session] = None,
        stop_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
        backoff: Optional[BackoffSchedule] = None,
    ):
        self.folder = folder
        self.url = base_url.rstrip("/") + UPLOAD_PATH
        self.config = config
        self.session = session or requests.Session()
        self.stop_event = stop_event or threading.Event()
        self._sleep = sleep or self.stop_event.wait
        self.backoff = backoff or BackoffSchedule(
            config.initial_backoff_ms, config.max_backoff_ms, config.jitter_ms
        )
        self.scanner = FileScanner(extensions=config.extensions)
        self.logger = logging.getLogger(__name__)

    @property
    def timeout(self) -> Tuple[float, float]:
        return (self.config.connect_timeout_s, self.config.read_timeout_s)

    def run(self) -> FolderSummary:
        """Upload every file of the folder; per-file faults never stop the scan."""
        summary = FolderSummary(folder=self.folder)
        files = list(self.scanner.scan(self.folder))
        if not files:
            self.logger.info(f"[{self.folder.name}] No files to process.")
            return summary

        self.logger.info(f"[{self.folder.name}] Found {len(files)} files")
        for path in files:
            if self.stop_event.is_set():
                self.logger.info(f"[{self.folder.name}] Stop requested, {len(files) - summary.total} files left")
                break
            try:
                outcome = self.upload_file(path)
            except OSError as e:
                self.logger.error(f"[{self.folder.name}] Cannot read {path.name}: {e}")
                outcome = UploadOutcome.FAILED
            summary.record(outcome)

        self.logger.info(
            f"[{self.folder.name}] Done: accepted={summary.accepted}, duplicate={summary.duplicate}, "
            f"failed={summary.failed}, abandoned={summary.abandoned}"
        )
        return summary

    def _post(self, path: Path) -> requests.Response:
        boundary = f"vtp-{uuid.uuid4().hex}"
        return self.session.post(
            self.url,
            data=multipart_body(path, boundary),
            headers={"Content-Type": f"multipart/form-data; boundary={boundary}"},
            timeout=self.timeout,
        )

    def _classify(self, path: Path, response: requests.Response) -> UploadOutcome:
        if response.status_code == BACKPRESSURE_STATUS:
            return UploadOutcome.BACKPRESSURE
        if response.status_code != 200:
            self.logger.warning(f"Server responded with code {response.status_code} for {path.name}")
            return UploadOutcome.FAILED
        try:
            status = response.json().get("status")
        except (ValueError, AttributeError):
            self.logger.warning(f"Malformed response for {path.name}: {response.text[:200]!r}")
            return UploadOutcome.FAILED
        if status in ACCEPTED_STATUSES:
            return UploadOutcome.ACCEPTED
        if status in DUPLICATE_STATUSES:
            return UploadOutcome.DUPLICATE
        self.logger.warning(f"Unexpected upload status {status!r} for {path.name}")
        return UploadOutcome.FAILED

    def upload_file(self, path: Path) -> UploadOutcome:
        """Upload one file, retrying the same file while the queue is full."""
        self.backoff.reset()
        backpressure_count = 0
        start_time = time.monotonic()

        while True:
            try:
                response = self._post(path)
            except requests.RequestException as e:
                self.logger.error(f"Failed to upload {path.name}: {e}")
                return UploadOutcome.FAILED

            outcome = self._classify(path, response)
            if outcome != UploadOutcome.BACKPRESSURE:
                if outcome == UploadOutcome.ACCEPTED:
                    self.logger.info(f"Uploaded: {path.name} ({time.monotonic() - start_time:.1f}s, {backpressure_count} retries)")
                elif outcome == UploadOutcome.DUPLICATE:
                    self.logger.info(f"Already on server, skipped: {path.name}")
                return outcome

            backpressure_count += 1
            if backpressure_count >= self.config.max_retries:
                self.logger.warning(f"Max retries reached for {path.name}. Skipping file.")
                return UploadOutcome.ABANDONED

            delay_ms = self.backoff.next_delay_ms()
            self.logger.info(
                f"Queue full for {path.name}, waiting {delay_ms}ms before retry "
                f"({backpressure_count}/{self.config.max_retries})"
            )
            self._sleep(delay_ms / 1000.0)
            if self.stop_event.is_set():
                self.logger.info(f"Stop requested while backing off on {path.name}")
                return UploadOutcome.ABANDONED
