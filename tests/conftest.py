import pytest
import yaml
from pathlib import Path
from unittest.mock import MagicMock
from vtp.config.models import AppConfig, ProducerConfig, TranscodeConfig
from vtp.domain.models import Job, TranscodeOutcome, TranscodeResult
from vtp.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        environment="local",
        log_dir=str(tmp_path / "logs"),
        consumer={
            "queue_length": 2,
            "threads": 1,
            "upload_dir": str(tmp_path / "uploads"),
            "temp_dir": str(tmp_path / "uploads_tmp"),
            "dedup": "content",
        },
        producer={
            "threads": 2,
            "root_video_path": str(tmp_path / "videos"),
            "initial_backoff_ms": 1000,
            "max_backoff_ms": 30000,
            "jitter_ms": 1000,
            "max_retries": 10,
        },
    )

@pytest.fixture
def producer_config():
    """Producer settings with small, deterministic retry values."""
    return ProducerConfig(
        threads=2,
        initial_backoff_ms=1000,
        max_backoff_ms=30000,
        jitter_ms=0,
        max_retries=3,
        extensions=[".mp4"],
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vtp.yaml"

    content = {
        'environment': 'docker',
        'consumer': {
            'queue_length': 3,
            'threads': 1,
            'upload_dir': str(tmp_path / 'uploads'),
            'temp_dir': str(tmp_path / 'uploads_tmp'),
            'dedup': 'filename',
        },
        'producer': {
            'threads': 1,
            'root_video_path': str(tmp_path),
            'extensions': ['mp4', 'MOV'],
            'max_retries': 5,
        },
        'transcode': {
            'crf': 30,
            'timeout_s': 60,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def recorded_events(event_bus):
    """Subscribes a recorder to every event type published on event_bus."""
    from vtp.domain import events as ev

    received = []
    for name in (
        "JobAdmitted", "JobStarted", "JobCompleted", "JobFellBack", "JobFailed",
        "AdmissionRejected", "DuplicateSkipped", "QueueChanged", "ActionMessage",
    ):
        event_bus.subscribe(getattr(ev, name), received.append)
    return received

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def published_dir(tmp_path):
    """Creates the final store directory."""
    d = tmp_path / "uploads"
    d.mkdir()
    return d

@pytest.fixture
def temp_dir(tmp_path):
    """Creates the staging directory."""
    d = tmp_path / "uploads_tmp"
    d.mkdir()
    return d

@pytest.fixture
def make_job(temp_dir):
    """Factory for jobs whose staged file exists in temp_dir."""
    def _make(name: str = "clip.mp4", content: bytes = b"original video bytes") -> Job:
        job = Job(source_path=temp_dir / "placeholder", display_name=name, original_name=name)
        staged = temp_dir / f"{job.job_id}_{name}"
        staged.write_bytes(content)
        job.source_path = staged
        job.size_bytes = len(content)
        return job
    return _make

@pytest.fixture
def source_root(tmp_path):
    """Creates <root>/folder1 and <root>/folder2 with dummy videos."""
    root = tmp_path / "videos"
    for i in (1, 2):
        folder = root / f"folder{i}"
        folder.mkdir(parents=True)
        for j in range(2):
            (folder / f"video{i}_{j}.mp4").write_bytes(b"dummy video content " * 100)
        (folder / "notes.txt").write_text("not a video")
    return root

# ============================================================================
# Transcoder Fixtures
# ============================================================================

@pytest.fixture
def fake_transcoder():
    """FFmpegAdapter stand-in; behaviour chosen per test via .outcome."""
    adapter = MagicMock()
    adapter.config = TranscodeConfig()
    adapter.outcome = TranscodeOutcome.SUCCEEDED

    def _transcode(input_path: Path, output_path: Path, shutdown_event=None):
        if adapter.outcome == TranscodeOutcome.SUCCEEDED:
            output_path.write_bytes(b"transcoded:" + input_path.read_bytes())
            return TranscodeResult(outcome=TranscodeOutcome.SUCCEEDED, returncode=0, elapsed_s=0.01)
        # Leave a partial output behind like a crashed ffmpeg would
        output_path.write_bytes(b"partial")
        return TranscodeResult(
            outcome=adapter.outcome,
            returncode=1 if adapter.outcome == TranscodeOutcome.EXITED_NONZERO else None,
            error_message=f"ffmpeg {adapter.outcome.value.lower()}",
        )

    adapter.transcode.side_effect = _transcode
    return adapter

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
