import pytest
from pathlib import Path
from pydantic import ValidationError

from vbt.domain.models import (
    BatchResult,
    ConversionProgress,
    ItemOverrides,
    ItemStatus,
    WorkItem,
    format_clock,
    has_optimized_marker,
)


def test_work_item_defaults():
    item = WorkItem(path=Path("/videos/clip.mp4"), size_bytes=1000)
    assert item.filename == "clip.mp4"
    assert item.status == ItemStatus.PENDING
    assert item.selected is True
    assert item.progress == 0.0
    assert item.is_ready
    assert not item.is_duration_loaded


def test_work_item_path_is_frozen():
    item = WorkItem(path=Path("clip.mp4"))
    with pytest.raises(ValidationError):
        item.path = Path("other.mp4")


def test_conversion_progress_bounds():
    with pytest.raises(ValidationError):
        ConversionProgress(percentage=120.0)


@pytest.mark.parametrize("name,expected", [
    ("holiday-CRF28.mp4", True),
    ("holiday-target25MB.mp4", True),
    ("holiday.mp4", False),
    ("crf_notes.mp4", False),
])
def test_optimized_marker(name, expected):
    assert has_optimized_marker(name) is expected
    assert WorkItem(path=Path(name)).is_invalid is expected


def test_format_clock():
    assert format_clock(65) == "01:05"
    assert format_clock(3725) == "1:02:05"


# --- ETA ---

def test_eta_minutes_and_seconds():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=600.0)
    item.update_progress(50.0, "2x", "30")
    assert item.eta == "2m 30s remaining"


def test_eta_hours():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=36000.0)
    item.update_progress(0.0, "1.0x", "30")
    assert item.eta == "10h 0m remaining"


def test_eta_uses_trimmed_length():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=600.0)
    item.update_progress(50.0, "1x", "30", media_seconds=120.0)
    assert item.eta == "1m 0s remaining"


@pytest.mark.parametrize("speed", ["0x", "N/A", ""])
def test_eta_calculating_without_speed(speed):
    item = WorkItem(path=Path("a.mp4"), duration_seconds=600.0)
    item.update_progress(10.0, speed, "0")
    assert item.eta == "Calculating..."


def test_eta_done_and_clamped():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=600.0)
    item.update_progress(150.0, "2x", "30")
    assert item.progress == 100.0
    assert item.eta == "Done"

    item.reset_progress()
    assert item.progress == 0.0
    assert item.eta == ""


def test_show_indeterminate_only_while_processing_without_progress():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=60.0)
    assert not item.show_indeterminate
    item.status = ItemStatus.PROCESSING
    assert item.show_indeterminate
    item.update_progress(5.0, "1x", "30")
    assert not item.show_indeterminate


# --- Trim and badges ---

def test_trimmed_item_display():
    item = WorkItem(
        path=Path("a.mp4"),
        duration_seconds=300.0,
        overrides=ItemOverrides(start_time=65.0, end_time=125.0),
    )
    assert item.is_trimmed
    assert item.trim_display == "01:05 - 02:05"


def test_full_range_is_not_trimmed():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=100.0,
                    overrides=ItemOverrides(start_time=0.0, end_time=100.0))
    assert not item.is_trimmed
    assert item.trim_display == ""


def test_custom_settings_badge():
    item = WorkItem(
        path=Path("a.mp4"),
        duration_seconds=300.0,
        overrides=ItemOverrides(target_size_mb=50, resolution="HD (720p)", fps="30"),
    )
    assert item.has_custom_settings
    assert item.has_custom_size
    assert item.custom_settings_badge == "50MB | HD (720p) | 30 Fps"


def test_no_badge_without_overrides():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=300.0)
    assert not item.has_custom_settings
    assert item.custom_settings_badge == ""


def test_item_trim_setters_keep_range_valid():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=60.0,
                    overrides=ItemOverrides(start_time=0.0, end_time=10.0))
    item.set_trim_start(20.0)
    assert item.overrides.start_time == pytest.approx(20.0)
    assert item.overrides.end_time == pytest.approx(20.1)

    item.set_trim_end(5.0)
    assert item.overrides.end_time == pytest.approx(5.0)
    assert item.overrides.start_time == pytest.approx(4.9)


def test_reset_custom_settings():
    item = WorkItem(path=Path("a.mp4"), duration_seconds=60.0,
                    overrides=ItemOverrides(target_size_mb=10, start_time=5.0))
    item.reset_custom_settings()
    assert item.overrides.target_size_mb is None
    assert item.overrides.start_time == 0.0
    assert item.overrides.end_time == 60.0
    assert not item.has_custom_settings


def test_batch_result_records_failures():
    result = BatchResult()
    result.record_failure(WorkItem(path=Path("bad.mp4")), "ffmpeg failed with exit code 1")
    assert len(result.failures) == 1
    assert result.failures[0].path == Path("bad.mp4")
    assert result.completed_count == 0
    assert result.cancelled is False
