"""Encode parameter derivation.

Pure functions only: every input is explicit and nothing here touches the
filesystem or spawns a process. "Not applicable" results are returned as
None (`NO_SPLIT`, unknown bitrate) rather than raised.
"""

from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict

from vbt.config.models import BatchRequest, RESOLUTION_MAP
from vbt.domain.models import ProcessingMode, WorkItem

ORIGINAL = "Original"
AUDIO_ALLOWANCE_KBPS = 128
MIN_VIDEO_BITRATE_KBPS = 100
MIN_BITRATE_CAP_KBPS = 100
SPLIT_SAFETY_FACTOR = 0.9
TRIM_MARGIN = 0.1
MIB = 1024 * 1024

NO_SPLIT = None


class TrimRange(NamedTuple):
    start: float = 0.0
    end: Optional[float] = None


class EncodePlan(BaseModel):
    """Everything needed to build the encoder command line for one item."""

    model_config = ConfigDict(frozen=True)

    mode: ProcessingMode
    encoder: str = "libx265"
    crf: int = 28
    resolution: str = ORIGINAL
    fps: str = ORIGINAL
    strip_metadata: bool = False
    trim: Optional[TrimRange] = None
    target_size_mb: Optional[int] = None
    video_bitrate_kbps: Optional[int] = None
    bitrate_cap_kbps: Optional[int] = None
    segment_seconds: Optional[float] = None
    expected_seconds: Optional[float] = None

    @property
    def is_two_pass(self) -> bool:
        return self.mode == ProcessingMode.TARGET_SIZE


def clamp_resolution(requested_width, source_width: Optional[int]) -> str:
    """Return the requested width as a string, or "Original" if it would upscale."""
    if requested_width in (None, "", ORIGINAL):
        return ORIGINAL
    try:
        requested = int(requested_width)
    except (TypeError, ValueError):
        return ORIGINAL
    if not source_width or source_width <= 0:
        return ORIGINAL
    if requested >= source_width:
        return ORIGINAL
    return str(requested)


def resolve_resolution(label: Optional[str], source_width: Optional[int]) -> str:
    """Map a UI label ("Full HD (1080p)") or raw width to a clamped width."""
    if not label:
        return ORIGINAL
    return clamp_resolution(RESOLUTION_MAP.get(label, label), source_width)


def select_fps(override: Optional[str], global_fps: Optional[str]) -> str:
    if override:
        return str(override)
    return str(global_fps) if global_fps else ORIGINAL


def target_video_bitrate_kbps(target_mb: float, duration_seconds: float) -> Optional[int]:
    """Video bitrate for a two-pass encode that lands near `target_mb`."""
    if duration_seconds <= 0 or target_mb <= 0:
        return None
    total_kbps = target_mb * 8192 / duration_seconds
    return max(MIN_VIDEO_BITRATE_KBPS, int(total_kbps - AUDIO_ALLOWANCE_KBPS))


def segment_duration(duration_seconds: float, original_bytes: int, split_mb: float) -> Optional[float]:
    """Seconds per segment so each part stays under `split_mb`, or NO_SPLIT.

    Assumes bytes are spread evenly over playback time. The 0.9 factor
    leaves headroom for that assumption being wrong.
    """
    if duration_seconds <= 0 or original_bytes <= 0 or split_mb <= 0:
        return NO_SPLIT
    split_bytes = split_mb * MIB * SPLIT_SAFETY_FACTOR
    if split_bytes >= original_bytes:
        return NO_SPLIT
    return duration_seconds * (split_bytes / original_bytes)


def set_trim_start(trim: TrimRange, value: float, duration_seconds: float) -> TrimRange:
    start = max(0.0, value)
    end = trim.end
    if duration_seconds > 0:
        start = min(start, duration_seconds)
    if end is not None and start >= end:
        end = start + TRIM_MARGIN
        if duration_seconds > 0 and end > duration_seconds:
            end = duration_seconds
            start = max(0.0, end - TRIM_MARGIN)
    return TrimRange(start, end)


def set_trim_end(trim: TrimRange, value: float, duration_seconds: float) -> TrimRange:
    end = max(0.0, value)
    if duration_seconds > 0 and end > duration_seconds:
        end = duration_seconds
    start = trim.start
    if end <= start:
        start = max(0.0, end - TRIM_MARGIN)
    return TrimRange(start, end)


def source_bitrate_cap_kbps(size_bytes: int, duration_seconds: float) -> Optional[int]:
    """Average source bitrate, used as -maxrate so CRF never inflates a file."""
    if size_bytes <= 0 or duration_seconds <= 0:
        return None
    cap = int(size_bytes * 8 / 1024 / duration_seconds)
    if cap < MIN_BITRATE_CAP_KBPS:
        return None
    return cap


def effective_trim(item: WorkItem) -> Optional[TrimRange]:
    if not item.is_trimmed:
        return None
    end = item.overrides.end_time
    if end is not None and item.is_duration_loaded and end >= item.duration_seconds:
        end = None
    return TrimRange(item.overrides.start_time, end)


def effective_mode(item: WorkItem, request: BatchRequest) -> ProcessingMode:
    """A per-item target size turns a CRF batch item into a two-pass encode."""
    if request.mode == ProcessingMode.CRF and item.has_custom_size:
        return ProcessingMode.TARGET_SIZE
    return request.mode


def plan_item(item: WorkItem, request: BatchRequest, source_width: Optional[int]) -> EncodePlan:
    mode = effective_mode(item, request)
    duration = item.duration_seconds

    if mode == ProcessingMode.SPLIT:
        return EncodePlan(
            mode=mode,
            segment_seconds=segment_duration(duration, item.size_bytes, request.split_size_mb),
        )

    trim = effective_trim(item)
    expected = None
    if trim is not None:
        end = trim.end if trim.end is not None else duration
        if end and end > trim.start:
            expected = end - trim.start

    if mode == ProcessingMode.COPY:
        return EncodePlan(mode=mode, trim=trim, expected_seconds=expected)

    resolution = resolve_resolution(item.overrides.resolution or request.resolution, source_width)
    fps = select_fps(item.overrides.fps, request.fps)
    common = dict(
        mode=mode,
        encoder=request.encoder,
        crf=request.crf,
        resolution=resolution,
        fps=fps,
        strip_metadata=request.strip_metadata,
        trim=trim,
        expected_seconds=expected,
    )

    if mode == ProcessingMode.TARGET_SIZE:
        target_mb = item.overrides.target_size_mb or request.target_size_mb
        # Bitrate is budgeted over what actually gets encoded
        budget_seconds = expected or duration
        return EncodePlan(
            **common,
            target_size_mb=target_mb,
            video_bitrate_kbps=target_video_bitrate_kbps(target_mb, budget_seconds),
        )

    cap = None
    if request.prevent_upsampling:
        cap = source_bitrate_cap_kbps(item.size_bytes, duration)
    return EncodePlan(**common, bitrate_cap_kbps=cap)
