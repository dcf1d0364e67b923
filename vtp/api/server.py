"""HTTP surface of the consumer.

Endpoints:
    POST /upload          multipart field "file"; 200 queued / already_exists /
                          skipped_duplicate, 503 queue_full, 500 on failure
    GET  /list            JSON array of published names
    GET  /queue-status    plain text "<occupancy>/<capacity>"
    GET  /videos/{name}   streams one published artifact

Handlers are plain `def` functions, so FastAPI runs them in its threadpool and
uploads are admitted concurrently.
"""
import logging
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse

from vtp.pipeline.ingest import IngestService, IngestStatus

logger = logging.getLogger(__name__)


def as_http_500(e: Exception) -> HTTPException:
    """Log the exception and return a generic 500 (no internal details leaked)."""
    logger.exception(f"Request failed: {e}")
    return HTTPException(status_code=500, detail="Internal server error")


def create_app(ingest: IngestService, list_extensions: Optional[List[str]] = None) -> FastAPI:
    """Builds the FastAPI application around an already wired IngestService."""
    extensions = [e.lower() for e in (list_extensions or [".mp4"])]
    published_dir: Path = ingest.published_dir
    published_root = published_dir.resolve()

    app = FastAPI(title="VTP Consumer")
    app.state.ingest = ingest

    @app.post("/upload")
    def upload(file: UploadFile = File(...)):
        try:
            result = ingest.submit(file.filename or "upload", file.file)
        except Exception as e:
            raise as_http_500(e)
        payload = result.model_dump(mode="json", exclude_none=True)
        if result.status == IngestStatus.QUEUE_FULL:
            return JSONResponse(status_code=503, content=payload)
        return payload

    @app.get("/list")
    def list_videos() -> List[str]:
        if not published_dir.is_dir():
            return []
        return sorted(
            p.name for p in published_dir.iterdir()
            if p.is_file() and p.suffix.lower() in extensions
        )

    @app.get("/queue-status", response_class=PlainTextResponse)
    def queue_status() -> str:
        return ingest.store.snapshot().as_text()

    @app.get("/videos/{name}")
    def get_video(name: str):
        path = (published_dir / name).resolve()
        if path.parent != published_root or not path.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(path)

    return app
