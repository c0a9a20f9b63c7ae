import threading
from collections import deque
from datetime import datetime
from typing import List, Optional
from vbt.domain.models import WorkItem


class UIState:
    """Thread-safe state manager for the interactive UI."""

    def __init__(self, activity_feed_max_items: int = 5):
        self._lock = threading.RLock()

        # Counters
        self.total_items = 0
        self.completed_count = 0
        self.failed_count = 0
        self.skipped_count = 0
        self.bytes_saved = 0

        # Items
        self.active_item: Optional[WorkItem] = None
        self.active_index = 0
        self.current_speed = "0x"
        self.current_fps = "0"
        self.recent_items = deque(maxlen=activity_feed_max_items)

        # Global Status
        self.mode = ""
        self.paused = False
        self.low_disk = False
        self.finished = False
        self.cancelled = False
        self.ui_title = "VBT"
        self.processing_start_time: Optional[datetime] = None
        self.summary_lines: List[str] = []

        self.last_action: str = ""
        self.last_action_time: Optional[datetime] = None

    def start_batch(self, total_items: int, mode: str):
        with self._lock:
            self.total_items = total_items
            self.mode = mode
            self.completed_count = 0
            self.failed_count = 0
            self.skipped_count = 0
            self.bytes_saved = 0
            self.finished = False
            self.cancelled = False
            self.paused = False
            self.low_disk = False
            self.processing_start_time = datetime.now()

    def set_active(self, item: WorkItem, index: int):
        with self._lock:
            self.active_item = item
            self.active_index = index
            self.current_speed = "0x"
            self.current_fps = "0"

    def update_progress(self, speed: str, fps: str):
        with self._lock:
            self.current_speed = speed
            self.current_fps = fps

    def add_completed_item(self, item: WorkItem, bytes_saved: int):
        with self._lock:
            self.completed_count += 1
            self.bytes_saved += bytes_saved
            self.recent_items.appendleft(item)
            self._clear_active(item)

    def add_failed_item(self, item: WorkItem):
        with self._lock:
            self.failed_count += 1
            self.recent_items.appendleft(item)
            self._clear_active(item)

    def add_skipped_item(self, item: WorkItem):
        with self._lock:
            self.skipped_count += 1
            self.recent_items.appendleft(item)
            self._clear_active(item)

    def _clear_active(self, item: WorkItem):
        if self.active_item is item:
            self.active_item = None
        self.current_speed = "0x"

    def finish(self, cancelled: bool):
        with self._lock:
            self.finished = True
            self.cancelled = cancelled
            self.paused = False
            self.low_disk = False
            self.active_item = None
            self.current_speed = "0x"
            self.current_fps = "0"

    @property
    def processed_count(self) -> int:
        with self._lock:
            return self.completed_count + self.failed_count + self.skipped_count

    def set_last_action(self, action: str):
        """Set last action message with timestamp."""
        with self._lock:
            self.last_action = action
            self.last_action_time = datetime.now()

    def get_last_action(self) -> str:
        """Get last action message (clears after 60 seconds)."""
        with self._lock:
            if self.last_action and self.last_action_time:
                elapsed = (datetime.now() - self.last_action_time).total_seconds()
                if elapsed > 60:
                    self.last_action = ""
                    self.last_action_time = None
            return self.last_action
