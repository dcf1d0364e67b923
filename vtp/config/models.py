import os
from pathlib import Path
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

DEDUP_STRATEGIES = ("none", "filename", "content")

def _normalize_extensions(values: List[str]) -> List[str]:
    return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in values]

def available_cpus() -> int:
    return os.cpu_count() or 1

class TranscodeConfig(BaseModel):
    """Fixed ffmpeg parameters, read once at startup."""
    ffmpeg_path: str = "ffmpeg"
    video_codec: str = "libx264"
    preset: str = "veryfast"
    crf: int = Field(default=28, ge=0, le=51)
    max_bitrate: str = "2M"
    buffer_size: str = "4M"
    max_width: int = Field(default=1280, gt=0)
    max_height: int = Field(default=720, gt=0)
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    timeout_s: Optional[float] = Field(default=1800.0, gt=0)
    output_tail_lines: int = Field(default=40, ge=1)

class ConsumerConfig(BaseModel):
    queue_length: int = Field(default=4, gt=0)
    threads: int = Field(default=2, gt=0)
    host: str = "0.0.0.0"
    port: int = Field(default=8080, gt=0, le=65535)
    upload_dir: str = "uploads"
    temp_dir: str = "uploads_tmp"
    dedup: str = "content"
    rebuild_dedup_on_start: bool = True
    list_extensions: List[str] = Field(default_factory=lambda: [".mp4"])

    @field_validator("dedup")
    @classmethod
    def validate_dedup(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in DEDUP_STRATEGIES:
            raise ValueError(f"Unsupported dedup strategy: {v}. Use one of {list(DEDUP_STRATEGIES)}")
        return value

    @field_validator("list_extensions")
    @classmethod
    def validate_list_extensions(cls, v: List[str]) -> List[str]:
        return _normalize_extensions(v)

    @model_validator(mode="after")
    def validate_dirs(self):
        if Path(self.upload_dir).resolve() == Path(self.temp_dir).resolve():
            raise ValueError("temp_dir must differ from upload_dir")
        return self

class ProducerConfig(BaseModel):
    threads: int = Field(default=1, gt=0)
    root_video_path: Optional[str] = None
    folder_prefix: str = "folder"
    extensions: List[str] = Field(default_factory=lambda: [".mp4", ".mov", ".avi", ".mkv", ".webm", ".flv"])
    consumer_host_local: str = "http://localhost:8080"
    consumer_host_docker: str = "http://consumer:8080"
    initial_backoff_ms: int = Field(default=1000, gt=0)
    max_backoff_ms: int = Field(default=30000, gt=0)
    jitter_ms: int = Field(default=1000, ge=0)
    max_retries: int = Field(default=10, ge=1)
    connect_timeout_s: float = Field(default=5.0, gt=0)
    read_timeout_s: float = Field(default=120.0, gt=0)
    probe_interval_s: float = Field(default=5.0, ge=0)
    probe_max_retries: int = Field(default=10, ge=1)
    probe_path: str = "/list"

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: List[str]) -> List[str]:
        return _normalize_extensions(v)

    @model_validator(mode="after")
    def validate_backoff(self):
        if self.max_backoff_ms < self.initial_backoff_ms:
            raise ValueError("max_backoff_ms must be >= initial_backoff_ms")
        return self

class UiConfig(BaseModel):
    """Terminal dashboard configuration."""
    activity_feed_max_items: int = Field(default=8, ge=1, le=50)
    refresh_interval_s: float = Field(default=0.5, ge=0.1)

class AppConfig(BaseModel):
    environment: Literal["local", "docker"] = "local"
    consumer: ConsumerConfig = Field(default_factory=ConsumerConfig)
    producer: ProducerConfig = Field(default_factory=ProducerConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)
    ui: UiConfig = Field(default_factory=UiConfig)
    log_dir: str = "logs"
    log_path: Optional[str] = None
    debug: bool = False

    @property
    def consumer_base_url(self) -> str:
        """Consumer address as seen by the producer, chosen by environment tag."""
        if self.environment == "docker":
            return self.producer.consumer_host_docker.rstrip("/")
        return self.producer.consumer_host_local.rstrip("/")

def validate_for_consumer(config: AppConfig, cpu_count: Optional[int] = None) -> None:
    """Startup checks that depend on the host; raises ValueError."""
    cpus = cpu_count or available_cpus()
    max_threads = cpus + 2
    if config.consumer.threads > max_threads:
        raise ValueError(
            f"consumer.threads must not exceed {max_threads} (available CPU cores + 2)"
        )

def validate_for_producer(config: AppConfig, cpu_count: Optional[int] = None) -> Path:
    """Startup checks for the producer role. Returns the validated root path."""
    cpus = cpu_count or available_cpus()
    max_threads = cpus * 3
    if config.producer.threads > max_threads:
        raise ValueError(
            f"producer.threads must not exceed {max_threads} (available CPU cores * 3)"
        )
    raw = (config.producer.root_video_path or "").strip()
    if not raw:
        raise ValueError("producer.root_video_path must be set")
    root = Path(raw)
    if not root.is_absolute():
        raise ValueError("producer.root_video_path must be an absolute path")
    if not root.exists():
        raise ValueError(f"Video directory does not exist: {root}")
    if not root.is_dir():
        raise ValueError(f"Specified path is not a directory: {root}")
    return root
