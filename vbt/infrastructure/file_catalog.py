import logging
import os
from pathlib import Path
from typing import List, Tuple

DEFAULT_EXTENSIONS = [
    ".mp4", ".mkv", ".mov", ".avi", ".webm", ".m4v", ".flv", ".wmv",
    ".mpg", ".mpeg", ".ts", ".mts", ".m2ts", ".3gp", ".3g2", ".ogv",
    ".vob", ".asf", ".f4v",
]


class FileCatalog:
    """Recursively scans a folder for video files."""

    def __init__(self, extensions: List[str] = None):
        extensions = extensions or DEFAULT_EXTENSIONS
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.logger = logging.getLogger(__name__)

    def scan(self, root_dir: Path) -> Tuple[int, List[Path]]:
        """Return (total bytes of every file under root_dir, sorted video paths)."""
        total_size = 0
        videos: List[Path] = []
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # Ensure deterministic traversal: sort directories and files
            dirs.sort()
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                try:
                    total_size += file_path.stat().st_size
                except OSError:
                    # Skip files we can't access
                    self.logger.debug(f"SCAN_SKIP: {file_path}")
                    continue
                if file_path.suffix.lower() in self.extensions:
                    videos.append(file_path)
        return total_size, videos
