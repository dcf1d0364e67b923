import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional

import requests

from vtp.config.models import ProducerConfig
from vtp.producer.upload_client import FolderSummary, UploadClient

logger = logging.getLogger(__name__)


def source_folders(root: Path, prefix: str, count: int) -> List[Path]:
    """<root>/<prefix>1 .. <root>/<prefix><count>; missing folders are skipped."""
    folders = []
    for i in range(1, count + 1):
        folder = root / f"{prefix}{i}"
        if not folder.is_dir():
            logger.warning(f"Skipping missing folder: {folder}")
            continue
        folders.append(folder)
    return folders


def run_producers(
    config: ProducerConfig,
    root: Path,
    base_url: str,
    stop_event: Optional[threading.Event] = None,
    session_factory: Callable[[], requests.Session] = requests.Session,
) -> List[FolderSummary]:
    """Runs one UploadClient per source folder on a fixed thread pool.

    Returns one summary per folder; a folder whose client crashed is reported
    with no counters rather than aborting the others.
    """
    stop_event = stop_event or threading.Event()
    folders = source_folders(root, config.folder_prefix, config.threads)
    if not folders:
        logger.warning(f"No source folders found under {root}")
        return []

    logger.info(f"Starting producer with {config.threads} threads for {len(folders)} folders")
    summaries: List[FolderSummary] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=config.threads, thread_name_prefix="vtp-producer") as executor:
        futures = {}
        for folder in folders:
            client = UploadClient(folder, base_url, config, session=session_factory(), stop_event=stop_event)
            futures[executor.submit(client.run)] = folder

        for future in concurrent.futures.as_completed(futures):
            folder = futures[future]
            try:
                summaries.append(future.result())
            except Exception as e:
                logger.error(f"Producer for {folder} failed: {e}")
                summaries.append(FolderSummary(folder=folder))

    summaries.sort(key=lambda s: s.folder.name)
    return summaries
