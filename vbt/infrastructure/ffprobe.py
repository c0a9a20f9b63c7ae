import logging
import subprocess
from pathlib import Path
from typing import List

from vbt.domain.errors import ProbeFailure
from vbt.infrastructure.binaries import ensure_executable


class FFprobeAdapter:
    """Wrapper around ffprobe for the two values the batch needs: duration and width."""

    def __init__(self, executable: str = "ffprobe"):
        self.executable = executable
        self.logger = logging.getLogger(__name__)

    def check_ready(self) -> None:
        ensure_executable(self.executable)

    def _query(self, args: List[str], file_path: Path) -> str:
        cmd = [self.executable, "-v", "error", *args, str(file_path)]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ProbeFailure(f"ffprobe could not be started for {file_path}: {e}") from e
        if result.returncode != 0:
            raise ProbeFailure(f"ffprobe failed for {file_path}: {result.stderr.strip()}")
        return result.stdout.strip()

    def get_duration(self, file_path: Path) -> float:
        """Container duration in seconds."""
        output = self._query(
            ["-show_entries", "format=duration", "-of", "default=noprint_wrappers=1:nokey=1"],
            file_path,
        )
        try:
            duration = float(output)
        except ValueError as e:
            raise ProbeFailure(f"Unreadable duration {output!r} for {file_path}") from e
        if duration <= 0:
            raise ProbeFailure(f"No duration reported for {file_path}")
        return duration

    def get_width(self, file_path: Path) -> int:
        """Pixel width of the first video stream."""
        output = self._query(
            ["-select_streams", "v:0", "-show_entries", "stream=width", "-of", "csv=p=0"],
            file_path,
        )
        # csv output can carry a trailing separator on some builds
        text = output.splitlines()[0].strip().rstrip(",") if output else ""
        try:
            width = int(text)
        except ValueError as e:
            raise ProbeFailure(f"Unreadable width {output!r} for {file_path}") from e
        if width <= 0:
            raise ProbeFailure(f"No video width reported for {file_path}")
        return width
