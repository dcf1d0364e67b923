import threading
import time
import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock
from vtp.infrastructure.ffmpeg import FFmpegAdapter
from vtp.domain.models import TranscodeOutcome
from vtp.config.models import TranscodeConfig

@pytest.fixture
def input_file(tmp_path):
    f = tmp_path / "input.mp4"
    f.write_bytes(b"video")
    return f

def _popen_mock(mock_popen, lines, returncode, create_output=None):
    process = mock_popen.return_value
    process.stdout = iter(lines)
    process.poll.return_value = returncode

    def _wait(timeout=None):
        if create_output is not None:
            create_output.write_bytes(b"out")
        return returncode

    process.wait.side_effect = _wait
    process.returncode = returncode
    return process

def test_ffmpeg_command_generation(tmp_path):
    adapter = FFmpegAdapter(TranscodeConfig(crf=30, max_width=1280, max_height=720))
    cmd = adapter._build_command(Path("in.mov"), Path("out.part"))

    assert cmd[0] == "ffmpeg"
    assert "-i" in cmd and "in.mov" in cmd
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-crf") + 1] == "30"
    assert cmd[cmd.index("-maxrate") + 1] == "2M"
    assert "min(1280,iw)" in cmd[cmd.index("-vf") + 1]
    # Container forced since the output carries a .part suffix
    assert cmd[-3:] == ["-f", "mp4", "out.part"]

def test_ffmpeg_custom_binary():
    adapter = FFmpegAdapter(TranscodeConfig(ffmpeg_path="/opt/ffmpeg/bin/ffmpeg"))
    assert adapter._build_command(Path("a"), Path("b"))[0] == "/opt/ffmpeg/bin/ffmpeg"

def test_ffmpeg_transcode_success(input_file, tmp_path):
    output = tmp_path / "out.part"
    with patch("subprocess.Popen") as mock_popen:
        _popen_mock(mock_popen, ["frame=1\n", "frame=2\n"], 0, create_output=output)
        result = FFmpegAdapter(TranscodeConfig()).transcode(input_file, output)

    assert result.outcome == TranscodeOutcome.SUCCEEDED
    assert result.succeeded
    assert result.returncode == 0
    assert "frame=2" in result.output
    assert output.exists()

def test_ffmpeg_transcode_nonzero_exit_removes_partial_output(input_file, tmp_path):
    output = tmp_path / "out.part"
    with patch("subprocess.Popen") as mock_popen:
        _popen_mock(mock_popen, ["Invalid data found\n"], 1, create_output=output)
        result = FFmpegAdapter(TranscodeConfig()).transcode(input_file, output)

    assert result.outcome == TranscodeOutcome.EXITED_NONZERO
    assert "code 1" in result.error_message
    assert "Invalid data" in result.output
    assert not output.exists()

def test_ffmpeg_success_without_output_is_failure(input_file, tmp_path):
    output = tmp_path / "out.part"
    with patch("subprocess.Popen") as mock_popen:
        _popen_mock(mock_popen, [], 0)
        result = FFmpegAdapter(TranscodeConfig()).transcode(input_file, output)

    assert result.outcome == TranscodeOutcome.EXITED_NONZERO
    assert "no output" in result.error_message

def test_ffmpeg_launch_failure_is_distinct(input_file, tmp_path):
    with patch("subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
        result = FFmpegAdapter(TranscodeConfig()).transcode(input_file, tmp_path / "out.part")

    assert result.outcome == TranscodeOutcome.LAUNCH_FAILED
    assert not result.launched
    assert result.returncode is None

def test_ffmpeg_missing_input(tmp_path):
    with patch("subprocess.Popen") as mock_popen:
        result = FFmpegAdapter(TranscodeConfig()).transcode(tmp_path / "missing.mp4", tmp_path / "out.part")
    assert result.outcome == TranscodeOutcome.EXITED_NONZERO
    assert not mock_popen.called

def test_ffmpeg_timeout_kills_process(input_file, tmp_path):
    output = tmp_path / "out.part"
    output.write_bytes(b"partial")
    with patch("subprocess.Popen") as mock_popen:
        process = mock_popen.return_value
        process.stdout = None
        process.poll.return_value = None
        process.wait.return_value = -15
        with patch("vtp.infrastructure.ffmpeg.time.monotonic", side_effect=[0.0] + [100.0] * 10):
            result = FFmpegAdapter(TranscodeConfig(timeout_s=10)).transcode(input_file, output)

    assert result.outcome == TranscodeOutcome.TIMED_OUT
    assert process.terminate.called
    assert not output.exists()

def test_ffmpeg_interrupted_by_shutdown(input_file, tmp_path):
    shutdown = threading.Event()
    shutdown.set()
    with patch("subprocess.Popen") as mock_popen:
        process = mock_popen.return_value
        process.stdout = None
        process.poll.return_value = None
        process.wait.return_value = -15
        result = FFmpegAdapter(TranscodeConfig()).transcode(input_file, tmp_path / "out.part", shutdown_event=shutdown)

    assert result.outcome == TranscodeOutcome.INTERRUPTED
    assert process.terminate.called

def test_ffmpeg_keeps_lines_read_after_exit(input_file, tmp_path):
    output = tmp_path / "out.part"

    def _slow_stdout():
        yield "frame=1\n"
        time.sleep(0.3)
        yield "muxing overhead: 0.5%\n"

    with patch("subprocess.Popen") as mock_popen:
        process = _popen_mock(mock_popen, [], 0, create_output=output)
        process.stdout = _slow_stdout()
        result = FFmpegAdapter(TranscodeConfig()).transcode(input_file, output)

    assert result.outcome == TranscodeOutcome.SUCCEEDED
    assert result.output.splitlines() == ["frame=1", "muxing overhead: 0.5%"]
