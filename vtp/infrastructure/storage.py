"""Filesystem helpers shared by the ingest endpoint and the workers.

Names are sanitized deterministically and collision-resolved with a numeric
suffix. Moves use an atomic rename; across filesystems they degrade to
copy-then-delete, which leaves a short window where a partially written file
is visible under the destination name.
"""

import errno
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

PLACEHOLDER = "_"
# Leaves room for numbered variants under the common 255-byte name limit
MAX_NAME_BYTES = 200
MAX_SUFFIX_BYTES = 16
TRANSCODED_SUFFIX = ".mp4"
_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\s]')


def sanitize_filename(name: str) -> str:
    """Replace characters unsafe for storage with the placeholder.

    Path separators are replaced too, so "a/b.mp4" becomes "a_b.mp4" and can
    never leave the flat final store. Names made only of dots become "_".
    Long names are cut to MAX_NAME_BYTES of UTF-8, keeping the extension.
    """
    cleaned = _UNSAFE_CHARS.sub(PLACEHOLDER, name)
    if not cleaned.strip("."):
        cleaned = PLACEHOLDER
    return limit_name_bytes(cleaned)


def safe_suffix(name: str) -> str:
    """Extension of name, or "" when it is too long to be a real one."""
    suffix = Path(name).suffix
    if len(suffix.encode("utf-8")) > MAX_SUFFIX_BYTES:
        return ""
    return suffix


def limit_name_bytes(name: str, max_bytes: int = MAX_NAME_BYTES) -> str:
    """Truncate the stem so the UTF-8 encoded name fits in max_bytes."""
    if len(name.encode("utf-8")) <= max_bytes:
        return name
    suffix = safe_suffix(name)
    stem = name[: len(name) - len(suffix)] if suffix else name
    budget = max_bytes - len(suffix.encode("utf-8"))
    # Cut on a character boundary
    stem = stem.encode("utf-8")[:budget].decode("utf-8", "ignore")
    return (stem or PLACEHOLDER) + suffix


def transcoded_name(name: str) -> str:
    """Published name of a transcoder output: same stem, MP4 extension."""
    suffix = safe_suffix(name)
    stem = name[: len(name) - len(suffix)] if suffix else name
    return stem + TRANSCODED_SUFFIX


def numbered_variant(name: str, index: int) -> str:
    """`clip.mp4`, 2 -> `clip_2.mp4`. Index 0 returns the name unchanged."""
    if index <= 0:
        return name
    path = Path(name)
    return f"{path.stem}_{index}{path.suffix}"


def resolve_collision(directory: Path, name: str, is_taken: Optional[Callable[[str], bool]] = None) -> str:
    """First free name among name, name_1, name_2, ... inside directory."""
    index = 0
    while True:
        candidate = numbered_variant(name, index)
        if not (directory / candidate).exists() and not (is_taken and is_taken(candidate)):
            return candidate
        index += 1


def move_file(src: Path, dest: Path) -> Path:
    """Move src to dest without overwriting an existing dest.

    Uses os.rename; falls back to copy-then-delete when the platform reports
    the two paths are on different filesystems.
    """
    if dest.exists():
        raise FileExistsError(f"Destination exists: {dest}")
    try:
        os.rename(src, dest)
    except OSError as e:
        if e.errno not in (errno.EXDEV, errno.ENOTSUP, getattr(errno, "EOPNOTSUPP", errno.ENOTSUP)):
            raise
        logger.warning(f"Atomic rename unsupported ({src} -> {dest}), copying instead")
        try:
            shutil.copy2(src, dest)
        except Exception:
            safe_unlink(dest)
            raise
        src.unlink()
    return dest


def publish_file(src: Path, directory: Path, name: str) -> Path:
    """Move src into directory under a collision-free variant of name.

    The existence check and the move are separate steps; on a lost race the
    next numbered variant is tried instead of overwriting.
    """
    directory.mkdir(parents=True, exist_ok=True)
    lost: set = set()
    while True:
        candidate = resolve_collision(directory, name, is_taken=lost.__contains__)
        try:
            return move_file(src, directory / candidate)
        except FileExistsError:
            lost.add(candidate)


def safe_unlink(path: Optional[Path]) -> bool:
    """Best-effort delete. Returns True when the file is gone afterwards."""
    if path is None:
        return True
    try:
        path.unlink()
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning(f"Failed to cleanup temp file {path}: {e}")
        return False
    return True
