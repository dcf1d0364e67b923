import subprocess
import logging
import time
import threading
import queue
from collections import deque
from pathlib import Path
from typing import List, Optional
from vtp.config.models import TranscodeConfig
from vtp.domain.models import TranscodeOutcome, TranscodeResult

READER_JOIN_TIMEOUT_S = 2.0


class FFmpegAdapter:
    """Wrapper around a single ffmpeg invocation.

    Non-zero exit, timeout and interruption are ordinary results, not
    exceptions. A process that could not be started at all is reported as
    LAUNCH_FAILED so callers can tell it apart from a transcode failure.
    """

    def __init__(self, config: TranscodeConfig, debug: bool = False):
        self.config = config
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _scale_filter(self) -> str:
        # Downscale only, keep aspect ratio, even dimensions for yuv420p
        w, h = self.config.max_width, self.config.max_height
        return (
            f"scale='min({w},iw)':'min({h},ih)':force_original_aspect_ratio=decrease,"
            "scale=trunc(iw/2)*2:trunc(ih/2)*2"
        )

    def _build_command(self, input_path: Path, output_path: Path) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cfg = self.config
        cmd = [
            cfg.ffmpeg_path,
            "-y",  # Overwrite output files
            "-hide_banner",
            "-i", str(input_path),
            "-c:v", cfg.video_codec,
            "-preset", cfg.preset,
            "-crf", str(cfg.crf),
            "-maxrate", cfg.max_bitrate,
            "-bufsize", cfg.buffer_size,
            "-vf", self._scale_filter(),
            "-pix_fmt", "yuv420p",
            "-c:a", cfg.audio_codec,
            "-b:a", cfg.audio_bitrate,
            "-movflags", "+faststart",
        ]
        # Output path carries a .part suffix, so the container must be forced
        cmd.extend(["-f", "mp4", str(output_path)])
        return cmd

    def _stop(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def transcode(self, input_path: Path, output_path: Path, shutdown_event: Optional[threading.Event] = None) -> TranscodeResult:
        """Runs ffmpeg on input_path writing output_path, bounded by the configured timeout."""
        filename = input_path.name
        start_time = time.monotonic()

        if not input_path.exists():
            return TranscodeResult(
                outcome=TranscodeOutcome.EXITED_NONZERO,
                error_message=f"Input file missing: {input_path}",
            )

        cmd = self._build_command(input_path, output_path)
        if self.debug:
            self.logger.info(f"FFMPEG_START: {filename}")
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                universal_newlines=True,
                bufsize=1
            )
        except OSError as e:
            self.logger.error(f"FFMPEG_LAUNCH_FAILED: {filename} ({e})")
            return TranscodeResult(
                outcome=TranscodeOutcome.LAUNCH_FAILED,
                error_message=f"Failed to start {self.config.ffmpeg_path}: {e}",
            )

        tail: deque = deque(maxlen=self.config.output_tail_lines)
        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

        def _reader():
            if not process.stdout:
                output_queue.put(None)
                return
            for line in process.stdout:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        deadline = start_time + self.config.timeout_s if self.config.timeout_s else None
        outcome: Optional[TranscodeOutcome] = None
        while True:
            if shutdown_event is not None and shutdown_event.is_set():
                self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (shutdown signal)")
                self._stop(process)
                outcome = TranscodeOutcome.INTERRUPTED
                break

            if deadline is not None and time.monotonic() > deadline:
                self.logger.warning(f"FFMPEG_TIMEOUT: {filename} after {self.config.timeout_s:.0f}s")
                self._stop(process)
                outcome = TranscodeOutcome.TIMED_OUT
                break

            try:
                line = output_queue.get(timeout=0.1)
            except queue.Empty:
                if process.poll() is not None:
                    break
                continue

            if line is None:
                break
            tail.append(line.rstrip())

        returncode = process.wait()
        # Pick up lines still buffered when the loop stopped early
        reader_thread.join(timeout=READER_JOIN_TIMEOUT_S)
        while True:
            try:
                line = output_queue.get_nowait()
            except queue.Empty:
                break
            if line is not None:
                tail.append(line.rstrip())
        elapsed = time.monotonic() - start_time

        if outcome is None:
            outcome = TranscodeOutcome.SUCCEEDED if returncode == 0 else TranscodeOutcome.EXITED_NONZERO

        error_message = None
        if outcome == TranscodeOutcome.EXITED_NONZERO:
            error_message = f"ffmpeg exited with code {returncode}"
        elif outcome == TranscodeOutcome.TIMED_OUT:
            error_message = f"ffmpeg timed out after {self.config.timeout_s:.0f}s"
        elif outcome == TranscodeOutcome.INTERRUPTED:
            error_message = "ffmpeg interrupted by shutdown"

        if outcome == TranscodeOutcome.SUCCEEDED and not output_path.exists():
            outcome = TranscodeOutcome.EXITED_NONZERO
            error_message = "ffmpeg exited cleanly but produced no output"

        if outcome != TranscodeOutcome.SUCCEEDED and output_path.exists():
            try:
                output_path.unlink()
            except OSError as e:
                self.logger.warning(f"Failed to remove partial output {output_path}: {e}")

        if self.debug:
            self.logger.info(f"FFMPEG_END: {filename} status={outcome.value} code={returncode} elapsed={elapsed:.2f}s")

        return TranscodeResult(
            outcome=outcome,
            returncode=returncode,
            output="\n".join(tail),
            error_message=error_message,
            elapsed_s=elapsed,
        )
