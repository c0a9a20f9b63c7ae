"""End-to-end batch runs against shell scripts standing in for ffmpeg/ffprobe.

The scripts emit the same stderr shapes the real tools do, so the whole
chain (process supervisor, progress parser, planner, orchestrator, naming)
is exercised without needing real video files.
"""

import os
import threading
import time
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from vbt.config.models import BatchRequest
from vbt.domain.events import ItemProgressUpdated
from vbt.domain.models import ItemStatus, ProcessingMode, WorkItem
from vbt.infrastructure.event_bus import EventBus
from vbt.infrastructure.ffmpeg import FFmpegAdapter
from vbt.infrastructure.ffprobe import FFprobeAdapter
from vbt.infrastructure.process import ProcessSupervisor
from vbt.infrastructure.resource_gate import DiskSpaceGate
from vbt.pipeline.orchestrator import BatchOrchestrator

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(os.name == "nt", reason="fake tools are POSIX shell scripts"),
]

FAKE_FFMPEG = """#!/bin/sh
for last; do :; done
case "$*" in
  *broken*)
    echo "broken.mp4: Invalid data found when processing input" >&2
    exit 1
    ;;
  *stall*)
    echo "  Duration: 00:00:10.00, start: 0.000000, bitrate: 800 kb/s" >&2
    printf 'partial' > "$last"
    echo "frame=  100 fps= 50 q=28.0 size=     100kB time=00:00:05.00 bitrate= 160.0kbits/s speed=2.0x" >&2
    exec sleep 30
    ;;
  *paced*)
    echo "  Duration: 00:00:10.00, start: 0.000000, bitrate: 800 kb/s" >&2
    for t in 02 04 06 08 10; do
      sleep 0.1
      echo "frame=  100 fps= 50 q=28.0 size=     100kB time=00:00:$t.00 bitrate= 160.0kbits/s speed=1.0x" >&2
    done
    printf 'encoded' > "$last"
    exit 0
    ;;
esac
echo "  Duration: 00:00:10.00, start: 0.000000, bitrate: 800 kb/s" >&2
echo "frame=  100 fps= 50 q=28.0 size=     100kB time=00:00:05.00 bitrate= 160.0kbits/s speed=2.0x" >&2
echo "frame=  200 fps= 50 q=28.0 size=     200kB time=00:00:10.00 bitrate= 160.0kbits/s speed=2.0x" >&2
case "$last" in
  /dev/null) ;;
  *%03d*) printf 'segment' > "$(echo "$last" | sed 's/%03d/000/')" ;;
  *) printf 'encoded' > "$last" ;;
esac
exit 0
"""

FAKE_FFPROBE = """#!/bin/sh
case "$*" in
  *format=duration*) echo "10.000000" ;;
  *) echo "1920" ;;
esac
exit 0
"""


@pytest.fixture
def bin_dir(tmp_path):
    directory = tmp_path / "bin"
    directory.mkdir()
    for name, body in (("ffmpeg", FAKE_FFMPEG), ("ffprobe", FAKE_FFPROBE)):
        script = directory / name
        script.write_text(body)
        # Deliberately not executable: preflight has to repair it
        script.chmod(0o644)
    return directory


@pytest.fixture
def videos(tmp_path):
    root = tmp_path / "videos"
    root.mkdir()
    for name in ("a.mp4", "broken.mp4"):
        (root / name).write_bytes(b"v" * 4096)
    return root


def _orchestrator(bus, bin_dir, videos, notifier, supervisor=None, ffprobe=None):
    return BatchOrchestrator(
        event_bus=bus,
        ffmpeg=FFmpegAdapter(supervisor or ProcessSupervisor(), executable=str(bin_dir / "ffmpeg")),
        ffprobe=ffprobe or FFprobeAdapter(executable=str(bin_dir / "ffprobe")),
        resource_gate=DiskSpaceGate(videos, 0),
        notifier=notifier,
        poll_interval=0.01,
    )


def test_crf_batch_with_one_failure(bin_dir, videos):
    bus = EventBus()
    progress = []
    bus.subscribe(ItemProgressUpdated, lambda e: progress.append(e.progress_percent))
    notifier = MagicMock()
    items = [WorkItem(path=videos / "a.mp4", size_bytes=4096), WorkItem(path=videos / "broken.mp4", size_bytes=4096)]

    result = _orchestrator(bus, bin_dir, videos, notifier).run(items, BatchRequest())

    good, bad = items
    assert good.status == ItemStatus.COMPLETED
    assert good.output_path == videos / "a-CRF28.mp4"
    assert good.output_path.read_bytes() == b"encoded"
    assert good.duration_seconds == 10.0
    assert good.source_width == 1920
    assert progress == [50.0, 100.0]

    assert bad.status == ItemStatus.FAILED
    assert "exit code 1" in bad.error_message
    assert result.completed_count == 1
    assert result.bytes_saved == 4096 - len(b"encoded")
    assert notifier.notify_info.call_args.args[0] == "Task Completed"
    assert os.access(bin_dir / "ffmpeg", os.X_OK)


def test_two_pass_and_split(bin_dir, videos):
    notifier = MagicMock()
    bus = EventBus()
    progress = []
    bus.subscribe(ItemProgressUpdated, lambda e: progress.append(e.progress_percent))
    orchestrator = _orchestrator(bus, bin_dir, videos, notifier)

    target = WorkItem(path=videos / "a.mp4", size_bytes=4096)
    orchestrator.run([target], BatchRequest(mode=ProcessingMode.TARGET_SIZE, target_size_mb=1))
    assert target.status == ItemStatus.COMPLETED
    assert target.output_path.name == "a-Target1MB.mp4"
    assert progress == [25.0, 50.0, 75.0, 100.0]

    big = videos / "big.mp4"
    big.write_bytes(b"v" * (2 * 1024 * 1024))
    split = WorkItem(path=big, size_bytes=big.stat().st_size)
    orchestrator.run([split], BatchRequest(mode=ProcessingMode.SPLIT, split_size_mb=1))
    assert split.status == ItemStatus.COMPLETED
    assert (videos / "big-Part000.mp4").read_bytes() == b"segment"


def test_cli_run(bin_dir, videos, tmp_path):
    from vbt import main as vbt_main

    (videos / "broken.mp4").unlink()
    log_path = tmp_path / "run.log"
    result = CliRunner().invoke(vbt_main.app, [
        str(videos), "--bin-dir", str(bin_dir), "--crf", "30", "--log-path", str(log_path),
        "--config", str(tmp_path / "absent.yaml"),
    ])
    # An explicit config path that does not exist is an error
    assert result.exit_code == 1

    config = tmp_path / "vbt.yaml"
    config.write_text("general:\n  poll_interval_s: 0.1\n  low_disk_buffer_gb: 0\n")
    result = CliRunner().invoke(vbt_main.app, [
        str(videos), "--bin-dir", str(bin_dir), "--crf", "30", "--log-path", str(log_path),
        "--config", str(config),
    ])

    assert result.exit_code == 0, result.output
    assert (videos / "a-CRF30.mp4").read_bytes() == b"encoded"
    log_text = log_path.read_text(encoding="utf-8")
    assert "BATCH START" in log_text
    assert "PROCESSING (1/1): A.MP4" in log_text


def test_cancel_mid_item_kills_encoder_and_discards_output(bin_dir, videos):
    (videos / "broken.mp4").unlink()
    stalled = videos / "stall.mp4"
    stalled.write_bytes(b"v" * 4096)
    supervisor = ProcessSupervisor()
    bus = EventBus()
    orchestrator = _orchestrator(bus, bin_dir, videos, MagicMock(), supervisor=supervisor)
    partial_seen = []

    def cancel_on_progress(event):
        partial_seen.append((videos / "stall-CRF28.mp4").exists())
        orchestrator.cancel()

    bus.subscribe(ItemProgressUpdated, cancel_on_progress)
    items = [WorkItem(path=stalled, size_bytes=4096), WorkItem(path=videos / "a.mp4", size_bytes=4096)]

    started = time.monotonic()
    result = orchestrator.run(items, BatchRequest())

    # The encoder sleeps for 30s unless it was killed
    assert time.monotonic() - started < 10
    assert result.cancelled is True
    assert partial_seen == [True]
    assert not supervisor.is_active
    assert not (videos / "stall-CRF28.mp4").exists()
    assert [item.status for item in items] == [ItemStatus.PENDING, ItemStatus.PENDING]
    assert not (videos / "a-CRF28.mp4").exists()


def test_pause_during_probe_keeps_new_encoder_suspended(bin_dir, videos):
    (videos / "broken.mp4").unlink()
    source = videos / "paced.mp4"
    source.write_bytes(b"v" * 4096)
    supervisor = ProcessSupervisor()
    held = []

    def release_once_suspended():
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not supervisor.is_suspended:
            time.sleep(0.01)
        held.append(supervisor.is_suspended)
        orchestrator.resume()

    class PausingProbe(FFprobeAdapter):
        def get_duration(self, file_path):
            duration = super().get_duration(file_path)
            orchestrator.pause()
            threading.Thread(target=release_once_suspended, daemon=True).start()
            return duration

    orchestrator = _orchestrator(
        EventBus(), bin_dir, videos, MagicMock(), supervisor=supervisor,
        ffprobe=PausingProbe(executable=str(bin_dir / "ffprobe")),
    )
    item = WorkItem(path=source, size_bytes=4096)

    orchestrator.run([item], BatchRequest())

    assert held == [True]
    assert item.status == ItemStatus.COMPLETED
    assert item.output_path.read_bytes() == b"encoded"
