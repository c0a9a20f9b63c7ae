from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

# Filename markers left by earlier runs. Matching is a plain substring test,
# so a user file that happens to contain one of these is skipped as well.
OPTIMIZED_MARKERS = ("-CRF", "-Target")


class ItemStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"  # nothing to do (e.g. already below split size)


class ProcessingMode(str, Enum):
    CRF = "crf"
    TARGET_SIZE = "target"
    COPY = "copy"
    SPLIT = "split"


class BatchState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


def has_optimized_marker(filename: str) -> bool:
    lowered = filename.lower()
    return any(marker.lower() in lowered for marker in OPTIMIZED_MARKERS)


def format_clock(seconds: Optional[float]) -> str:
    """Format seconds as h:mm:ss (one hour or more) or mm:ss."""
    if seconds is None:
        return "--:--:--.--"
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours >= 1:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class ConversionProgress(BaseModel):
    """One progress sample parsed from the encoder's diagnostic output."""

    model_config = ConfigDict(frozen=True)

    percentage: float = Field(ge=0.0, le=100.0)
    speed: str = "0x"
    fps: str = "0"


class ItemOverrides(BaseModel):
    target_size_mb: Optional[int] = Field(default=None, gt=0)
    resolution: Optional[str] = None
    fps: Optional[str] = None
    start_time: float = 0.0
    end_time: Optional[float] = None  # None = until end of source


class WorkItem(BaseModel):
    """A single source file queued for processing."""

    path: Path = Field(frozen=True)
    size_bytes: int = 0
    duration_seconds: float = 0.0
    source_width: Optional[int] = None
    overrides: ItemOverrides = Field(default_factory=ItemOverrides)
    selected: bool = True
    status: ItemStatus = ItemStatus.PENDING
    progress: float = 0.0
    eta: str = ""
    output_path: Optional[Path] = None
    output_size_bytes: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def is_processing(self) -> bool:
        return self.status == ItemStatus.PROCESSING

    @property
    def is_completed(self) -> bool:
        return self.status == ItemStatus.COMPLETED

    @property
    def is_duration_loaded(self) -> bool:
        return self.duration_seconds > 0

    @property
    def is_invalid(self) -> bool:
        return has_optimized_marker(self.filename)

    @property
    def is_ready(self) -> bool:
        return not self.is_processing and not self.is_completed and not self.is_invalid

    @property
    def show_indeterminate(self) -> bool:
        return self.is_processing and self.progress <= 0

    @property
    def has_custom_size(self) -> bool:
        return self.overrides.target_size_mb is not None

    @property
    def is_trimmed(self) -> bool:
        start = self.overrides.start_time
        end = self.overrides.end_time
        if start > 0.001:
            return True
        if end is None:
            return False
        if self.is_duration_loaded:
            return end < self.duration_seconds - 0.001
        return end > 0

    @property
    def trim_display(self) -> str:
        if not self.is_trimmed:
            return ""
        return f"{format_clock(self.overrides.start_time)} - {format_clock(self.overrides.end_time)}"

    @property
    def has_custom_settings(self) -> bool:
        o = self.overrides
        return self.has_custom_size or bool(o.resolution) or bool(o.fps) or self.is_trimmed

    @property
    def custom_settings_badge(self) -> str:
        if not self.has_custom_settings:
            return ""
        parts: List[str] = []
        if self.has_custom_size:
            parts.append(f"{self.overrides.target_size_mb}MB")
        if self.overrides.resolution:
            parts.append(self.overrides.resolution)
        if self.overrides.fps:
            parts.append(f"{self.overrides.fps} Fps")
        if self.is_trimmed:
            parts.append(self.trim_display)
        return " | ".join(parts)

    def set_trim_start(self, value: float) -> None:
        from vbt.pipeline.planner import TrimRange, set_trim_start

        trim = set_trim_start(
            TrimRange(self.overrides.start_time, self.overrides.end_time),
            value,
            self.duration_seconds,
        )
        self.overrides.start_time, self.overrides.end_time = trim.start, trim.end

    def set_trim_end(self, value: float) -> None:
        from vbt.pipeline.planner import TrimRange, set_trim_end

        trim = set_trim_end(
            TrimRange(self.overrides.start_time, self.overrides.end_time),
            value,
            self.duration_seconds,
        )
        self.overrides.start_time, self.overrides.end_time = trim.start, trim.end

    def reset_custom_settings(self) -> None:
        self.overrides = ItemOverrides(
            end_time=self.duration_seconds if self.is_duration_loaded else None
        )

    def reset_progress(self) -> None:
        self.progress = 0.0
        self.eta = ""

    def update_progress(self, percentage: float, speed: str, fps: str,
                        media_seconds: Optional[float] = None) -> None:
        """Store the latest percentage and recompute the ETA string.

        `media_seconds` is the length actually being encoded (a trimmed range);
        it defaults to the probed duration.
        """
        self.progress = min(100.0, max(0.0, percentage))

        if self.progress >= 100:
            self.eta = "Done"
            return

        try:
            speed_value = float(speed.rstrip("x"))
        except ValueError:
            speed_value = 0.0

        if speed_value <= 0:
            self.eta = "Calculating..."
            return

        total_media = media_seconds if media_seconds and media_seconds > 0 else self.duration_seconds
        remaining_media = total_media * (1 - self.progress / 100)
        left = timedelta(seconds=remaining_media / speed_value)
        total_seconds = int(left.total_seconds())
        hours, rest = divmod(total_seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours >= 1:
            self.eta = f"{hours}h {minutes}m remaining"
        else:
            self.eta = f"{minutes}m {seconds}s remaining"


class ItemFailure(BaseModel):
    path: Path
    reason: str


class BatchResult(BaseModel):
    completed_count: int = 0
    bytes_saved: int = 0
    failures: List[ItemFailure] = Field(default_factory=list)
    cancelled: bool = False

    def record_failure(self, item: WorkItem, reason: str) -> None:
        self.failures.append(ItemFailure(path=item.path, reason=reason))
