"""Duplicate detection strategies for incoming uploads.

Every strategy answers one question: "was something equivalent already
accepted?". Keys are claimed atomically so two concurrent identical uploads
cannot both pass. A claim becomes permanent once the upload is admitted; a
claim for an upload that was then rejected (queue full) is discarded so the
producer's retry is not mistaken for a duplicate.

Records live in memory only. rebuild() repopulates them from the published
store at startup.
"""

import hashlib
import logging
import threading
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Set

from vtp.infrastructure.storage import sanitize_filename

CHUNK_SIZE = 1024 * 1024

logger = logging.getLogger(__name__)


def fingerprint_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """SHA-256 of a seekable stream, leaving it rewound."""
    hasher = hashlib.sha256()
    stream.seek(0)
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        hasher.update(chunk)
    stream.seek(0)
    return hasher.hexdigest()


def fingerprint_file(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    with open(path, "rb") as f:
        return fingerprint_stream(f, chunk_size)


class DuplicateDetector:
    """Base strategy: a process-wide set of keys."""

    name = "base"
    #: status reported to the client when a duplicate is found
    duplicate_status = "skipped_duplicate"

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: Set[str] = set()

    def key_for(self, filename: str, stream: Optional[BinaryIO]) -> Optional[str]:
        raise NotImplementedError

    def claim(self, key: Optional[str]) -> bool:
        """Record key. False when it was already recorded (duplicate)."""
        if key is None:
            return True
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def discard(self, key: Optional[str]):
        if key is None:
            return
        with self._lock:
            self._keys.discard(key)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def _published_keys(self, files: Iterable[Path]) -> Iterable[str]:
        raise NotImplementedError

    def rebuild(self, published_dir: Path) -> int:
        """Seed the records from files already in the published store."""
        if not published_dir.is_dir():
            return 0
        files = sorted(p for p in published_dir.iterdir() if p.is_file())
        added = 0
        for key in self._published_keys(files):
            if self.claim(key):
                added += 1
        logger.info(f"Dedup ({self.name}): rebuilt {added} records from {published_dir}")
        return added


class NoDuplicateDetector(DuplicateDetector):
    """Accepts everything."""

    name = "none"

    def key_for(self, filename: str, stream: Optional[BinaryIO]) -> Optional[str]:
        return None

    def _published_keys(self, files: Iterable[Path]) -> Iterable[str]:
        return []


class FilenameDuplicateDetector(DuplicateDetector):
    """Keys on the sanitized client-declared name."""

    name = "filename"
    duplicate_status = "already_exists"

    def key_for(self, filename: str, stream: Optional[BinaryIO]) -> Optional[str]:
        return sanitize_filename(filename)

    def _published_keys(self, files: Iterable[Path]) -> Iterable[str]:
        return [p.name for p in files]


class ContentDuplicateDetector(DuplicateDetector):
    """Keys on the SHA-256 of the uploaded bytes.

    Only fallback-published originals can be recognised after a restart;
    transcoded outputs no longer match their source fingerprint.
    """

    name = "content"

    def key_for(self, filename: str, stream: Optional[BinaryIO]) -> Optional[str]:
        if stream is None:
            return None
        return fingerprint_stream(stream)

    def _published_keys(self, files: Iterable[Path]) -> Iterable[str]:
        for path in files:
            try:
                yield fingerprint_file(path)
            except OSError as e:
                logger.warning(f"Dedup rebuild: cannot hash {path.name}: {e}")


def build_detector(strategy: str) -> DuplicateDetector:
    detectors = {
        NoDuplicateDetector.name: NoDuplicateDetector,
        FilenameDuplicateDetector.name: FilenameDuplicateDetector,
        ContentDuplicateDetector.name: ContentDuplicateDetector,
    }
    try:
        return detectors[strategy]()
    except KeyError:
        raise ValueError(f"Unknown dedup strategy: {strategy}") from None
