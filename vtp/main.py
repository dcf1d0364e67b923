import typer
import threading
from pathlib import Path
from typing import Optional

import requests
import uvicorn

from vtp.config.loader import load_config
from vtp.config.models import AppConfig, validate_for_consumer, validate_for_producer
from vtp.infrastructure.logging import setup_logging
from vtp.infrastructure.event_bus import EventBus
from vtp.infrastructure.ffmpeg import FFmpegAdapter
from vtp.infrastructure.housekeeping import HousekeepingService
from vtp.pipeline.dedup import build_detector
from vtp.pipeline.ingest import IngestService
from vtp.pipeline.job_store import JobStore
from vtp.pipeline.processor import VideoProcessor
from vtp.pipeline.worker_pool import WorkerPool
from vtp.api.server import create_app
from vtp.producer.readiness import ConsumerUnavailable, wait_for_consumer
from vtp.producer.runner import run_producers
from vtp.ui.state import UIState
from vtp.ui.manager import UIManager
from vtp.ui.dashboard import Dashboard
from vtp.domain.events import ActionMessage, ServiceStarted

app = typer.Typer(help="VTP (Video Transfer Pipeline) - producer/consumer video ingest")

DEFAULT_CONFIG = Path("conf/vtp.yaml")


def _load(config_path: Path) -> AppConfig:
    """Load YAML config, or defaults when the default path is absent."""
    if config_path == DEFAULT_CONFIG and not config_path.exists():
        return AppConfig()
    return load_config(config_path)


def _fatal(e: Exception):
    with open("error.log", "a") as f:
        import traceback
        traceback.print_exc(file=f)
    typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def build_consumer(config: AppConfig, bus: EventBus, shutdown_event: threading.Event):
    """Wires store, workers and ingest service. Returns (app, pool, ingest)."""
    upload_dir = Path(config.consumer.upload_dir)
    temp_dir = Path(config.consumer.temp_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    temp_dir.mkdir(parents=True, exist_ok=True)

    removed = HousekeepingService().cleanup_temp_area(temp_dir)
    if removed:
        bus.publish(ActionMessage(message=f"Removed {removed} stale temp files"))

    detector = build_detector(config.consumer.dedup)
    if config.consumer.rebuild_dedup_on_start:
        known = detector.rebuild(upload_dir)
        if known:
            bus.publish(ActionMessage(message=f"Dedup index: {known} published files"))

    store = JobStore(config.consumer.queue_length)
    ffmpeg = FFmpegAdapter(config.transcode, debug=config.debug)
    processor = VideoProcessor(
        ffmpeg_adapter=ffmpeg,
        event_bus=bus,
        temp_dir=temp_dir,
        published_dir=upload_dir,
        shutdown_event=shutdown_event,
        debug=config.debug,
    )
    pool = WorkerPool(store, processor.process_video_file, config.consumer.threads, event_bus=bus)
    ingest = IngestService(store, bus, published_dir=upload_dir, temp_dir=temp_dir, detector=detector)
    web_app = create_app(ingest, list_extensions=config.consumer.list_extensions)
    return web_app, pool, ingest


@app.command()
def serve(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Override number of worker threads"),
    queue_length: Optional[int] = typer.Option(None, "--queue-length", "-q", help="Override queue capacity"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Listen port"),
    dedup: Optional[str] = typer.Option(None, "--dedup", help="Duplicate detection (none, filename, content)"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    dashboard: bool = typer.Option(False, "--dashboard/--no-dashboard", help="Show live terminal dashboard"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Run the consumer: ingest endpoint, bounded queue and transcode workers."""
    try:
        try:
            config = _load(config_path)
            # Apply CLI overrides
            overrides = {}
            if threads is not None: overrides["threads"] = threads
            if queue_length is not None: overrides["queue_length"] = queue_length
            if host is not None: overrides["host"] = host
            if port is not None: overrides["port"] = port
            if dedup is not None: overrides["dedup"] = dedup
            if overrides:
                config.consumer = config.consumer.model_validate({**config.consumer.model_dump(), **overrides})
            if log_path is not None: config.log_path = str(log_path)
            if debug: config.debug = True
            validate_for_consumer(config)
        except (ValueError, FileNotFoundError) as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        logger = setup_logging(Path(config.log_dir), role="consumer", debug=config.debug, log_path=config.log_path)

        bus = EventBus()
        ui_state = UIState(activity_feed_max_items=config.ui.activity_feed_max_items)
        UIManager(bus, ui_state)

        shutdown_event = threading.Event()
        web_app, pool, ingest = build_consumer(config, bus, shutdown_event)
        ui_state.set_queue(0, config.consumer.queue_length)

        server = uvicorn.Server(uvicorn.Config(
            web_app,
            host=config.consumer.host,
            port=config.consumer.port,
            log_config=None,
            log_level="warning",
        ))

        url = f"http://{config.consumer.host}:{config.consumer.port}"
        pool.start()
        logger.info(
            f"Consumer listening on {url} (queue={config.consumer.queue_length}, "
            f"workers={config.consumer.threads}, dedup={config.consumer.dedup})"
        )
        bus.publish(ServiceStarted(url=url, upload_dir=ingest.published_dir, workers=config.consumer.threads))
        if not dashboard:
            typer.echo(f"VTP consumer listening on {url}")

        try:
            if dashboard:
                with Dashboard(ui_state, refresh_interval_s=config.ui.refresh_interval_s):
                    server.run()
            else:
                server.run()
        finally:
            shutdown_event.set()
            if not pool.stop(timeout=10.0):
                logger.warning("Some workers did not stop in time")
            logger.info(f"Consumer stopped after {pool.processed_count} jobs")

    except KeyboardInterrupt:
        typer.secho("\n✓ Consumer stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except Exception as e:
        _fatal(e)


@app.command()
def produce(
    root: Optional[Path] = typer.Argument(None, help="Root folder holding folder1..folderN (optional if set in config)"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Override number of producer threads"),
    consumer_url: Optional[str] = typer.Option(None, "--consumer-url", help="Consumer base URL (overrides environment)"),
    environment: Optional[str] = typer.Option(None, "--environment", "-e", help="local or docker"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Upload every file of <root>/folder1..folderN to the consumer."""
    try:
        try:
            config = _load(config_path)
            overrides = {}
            if threads is not None: overrides["threads"] = threads
            if root is not None: overrides["root_video_path"] = str(root)
            if overrides:
                config.producer = config.producer.model_validate({**config.producer.model_dump(), **overrides})
            if environment is not None:
                config = AppConfig.model_validate({**config.model_dump(), "environment": environment})
            if log_path is not None: config.log_path = str(log_path)
            if debug: config.debug = True
            root_path = validate_for_producer(config)
        except (ValueError, FileNotFoundError) as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        logger = setup_logging(Path(config.log_dir), role="producer", debug=config.debug, log_path=config.log_path)
        base_url = (consumer_url or config.consumer_base_url).rstrip("/")
        producer = config.producer

        try:
            wait_for_consumer(
                base_url + producer.probe_path,
                max_retries=producer.probe_max_retries,
                interval_s=producer.probe_interval_s,
                timeout_s=producer.connect_timeout_s,
            )
        except ConsumerUnavailable as e:
            logger.error(str(e))
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        stop_event = threading.Event()
        try:
            summaries = run_producers(producer, root_path, base_url, stop_event=stop_event)
        except KeyboardInterrupt:
            stop_event.set()
            raise

        for s in summaries:
            typer.echo(
                f"{s.folder.name}: accepted={s.accepted} duplicate={s.duplicate} "
                f"failed={s.failed} abandoned={s.abandoned}"
            )
        logger.info("All producers finished")

    except KeyboardInterrupt:
        typer.secho("\n✓ Producer stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except Exception as e:
        _fatal(e)


@app.command()
def status(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    consumer_url: Optional[str] = typer.Option(None, "--consumer-url", help="Consumer base URL (overrides environment)"),
):
    """Print the consumer's queue occupancy as occupancy/capacity."""
    try:
        config = _load(config_path)
    except (ValueError, FileNotFoundError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    base_url = (consumer_url or config.consumer_base_url).rstrip("/")
    timeout = (config.producer.connect_timeout_s, config.producer.connect_timeout_s)
    try:
        response = requests.get(f"{base_url}/queue-status", timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        typer.secho(f"Error: consumer not reachable at {base_url}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(response.text.strip())


if __name__ == "__main__":
    app()
