import logging
import shutil
from pathlib import Path
from typing import Protocol

from vbt.config.models import GIB


class ResourceGate(Protocol):
    def is_low(self) -> bool: ...


class DiskSpaceGate:
    """Reports low when free space on the volume holding `path` drops below a threshold.

    Probing errors count as "not low" so a flaky query never blocks a batch.
    """

    def __init__(self, path: Path, threshold_bytes: int):
        self.path = Path(path)
        self.threshold_bytes = threshold_bytes
        self.logger = logging.getLogger(__name__)

    def free_bytes(self) -> int:
        return shutil.disk_usage(str(self.path)).free

    def is_low(self) -> bool:
        try:
            free = self.free_bytes()
        except Exception as e:
            self.logger.error(f"There was an error while checking disk space: {e}")
            return False
        self.logger.info(
            f"DISK_CHECK: path={self.path} free={free / GIB:.1f}GB buffer={self.threshold_bytes / GIB:.1f}GB"
        )
        return free < self.threshold_bytes
