import logging
import os
from pathlib import Path

class HousekeepingService:
    """Service for cleaning up artifacts a previous consumer process left behind."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_area(self, directory: Path) -> int:
        """Removes every staged upload and partial ffmpeg output in the temp area.

        Queue state is not persisted, so anything still staged at startup can
        never be picked up again.
        """
        removed = 0
        if not directory.exists():
            return removed
        for root, dirs, files in os.walk(directory):
            for file in files:
                try:
                    (Path(root) / file).unlink()
                    removed += 1
                except OSError as e:
                    self.logger.warning(f"Failed to remove stale temp file {file}: {e}")
        if removed:
            self.logger.info(f"Housekeeping: removed {removed} stale temp files from {directory}")
        return removed
