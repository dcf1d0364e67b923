from pathlib import Path
from typing import List, Generator, Optional

class FileScanner:
    """Lists the files of one source folder in a deterministic order.

    Only the folder itself is scanned; subfolders are not descended into.
    An empty extension list accepts every regular file.
    """

    def __init__(self, extensions: Optional[List[str]] = None):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in (extensions or [])]

    def scan(self, folder: Path) -> Generator[Path, None, None]:
        """Yields matching files sorted by name."""
        try:
            entries = sorted(folder.iterdir(), key=lambda p: p.name)
        except OSError:
            return

        for file_path in entries:
            if file_path.name.startswith("."):
                continue
            if self.extensions and file_path.suffix.lower() not in self.extensions:
                continue
            try:
                if not file_path.is_file():
                    continue
            except OSError:
                # Skip files we can't access
                continue
            yield file_path
