import pytest
from pathlib import Path
from typing import Callable, List, Optional
from unittest.mock import MagicMock

from vbt.config.models import BatchRequest
from vbt.domain.errors import ProbeFailure
from vbt.domain.models import ConversionProgress, WorkItem
from vbt.infrastructure.event_bus import EventBus
from vbt.pipeline.orchestrator import BatchOrchestrator

# ============================================================================
# Fakes for the external tools
# ============================================================================


class FakeFFprobe:
    """Answers duration/width queries from dicts keyed by file name."""

    def __init__(self, duration: float = 60.0, width: int = 1920):
        self.duration = duration
        self.width = width
        self.durations = {}
        self.widths = {}
        self.ready_error: Optional[Exception] = None

    def check_ready(self):
        if self.ready_error:
            raise self.ready_error

    def get_duration(self, file_path: Path) -> float:
        value = self.durations.get(file_path.name, self.duration)
        if value is None:
            raise ProbeFailure(f"No duration reported for {file_path}")
        return value

    def get_width(self, file_path: Path) -> int:
        value = self.widths.get(file_path.name, self.width)
        if value is None:
            raise ProbeFailure(f"No video width reported for {file_path}")
        return value


class FakeFFmpeg:
    """Records every dispatch and writes a fake output file.

    `hook(name, input_path)` runs before the output is written, which lets a
    test pause or cancel the batch "while ffmpeg is running".
    """

    def __init__(self, output_bytes: int = 400):
        self.output_bytes = output_bytes
        self.calls: List[tuple] = []
        self.fail_for = {}
        self.hook: Optional[Callable[[str, Path], None]] = None
        self.progress: List[ConversionProgress] = []
        self.suspend_count = 0
        self.resume_count = 0
        self.kill_count = 0
        self.ready_error: Optional[Exception] = None

    def check_ready(self):
        if self.ready_error:
            raise self.ready_error

    def suspend(self):
        self.suspend_count += 1

    def resume(self):
        self.resume_count += 1

    def kill(self):
        self.kill_count += 1

    def _run(self, name, input_path, output_path, plan, on_progress, should_stop, on_spawn):
        self.calls.append((name, input_path, output_path, plan))
        if on_spawn:
            on_spawn()
        if self.hook:
            self.hook(name, input_path)
        for event in self.progress:
            if on_progress:
                on_progress(event)
        if self.output_bytes is not None:
            output_path.write_bytes(b"x" * self.output_bytes)
        error = self.fail_for.get(input_path.name)
        if error:
            raise error

    def compress(self, input_path, output_path, plan, on_progress=None, should_stop=None, on_spawn=None):
        self._run("compress", input_path, output_path, plan, on_progress, should_stop, on_spawn)

    def compress_target_size(self, input_path, output_path, plan, on_progress=None, should_stop=None, on_spawn=None):
        self._run("compress_target_size", input_path, output_path, plan, on_progress, should_stop, on_spawn)

    def copy(self, input_path, output_path, plan, on_progress=None, should_stop=None, on_spawn=None):
        self._run("copy", input_path, output_path, plan, on_progress, should_stop, on_spawn)

    def split(self, input_path, pattern, plan, on_progress=None, should_stop=None, on_spawn=None):
        first = Path(str(pattern).replace("%03d", "000"))
        self._run("split", input_path, first, plan, on_progress, should_stop, on_spawn)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


@pytest.fixture
def batch_request():
    return BatchRequest(low_disk_buffer_bytes=5 * 1024 ** 3)


@pytest.fixture
def make_item(tmp_path):
    """Factory: writes a source file of `size` bytes and wraps it as a WorkItem."""

    def _make(name: str = "clip.mp4", size: int = 1000, **kwargs) -> WorkItem:
        path = tmp_path / name
        path.write_bytes(b"v" * size)
        return WorkItem(path=path, size_bytes=size, **kwargs)

    return _make


@pytest.fixture
def fake_ffmpeg():
    return FakeFFmpeg()


@pytest.fixture
def fake_ffprobe():
    return FakeFFprobe()


@pytest.fixture
def resource_gate():
    gate = MagicMock()
    gate.is_low.return_value = False
    return gate


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.confirm.return_value = True
    return mock


@pytest.fixture
def orchestrator(event_bus, fake_ffmpeg, fake_ffprobe, resource_gate, notifier):
    return BatchOrchestrator(
        event_bus=event_bus,
        ffmpeg=fake_ffmpeg,
        ffprobe=fake_ffprobe,
        resource_gate=resource_gate,
        notifier=notifier,
        poll_interval=0.01,
    )


@pytest.fixture
def recorded_events(event_bus):
    """Subscribes to every published event type the tests care about."""
    from vbt.domain import events as ev

    received = []
    for event_type in (
        ev.BatchStarted, ev.BatchPaused, ev.BatchResumed, ev.BatchFinished,
        ev.ItemStarted, ev.ItemProgressUpdated, ev.ItemCompleted, ev.ItemFailed,
        ev.ItemSkipped, ev.ActionMessage,
    ):
        event_bus.subscribe(event_type, received.append)
    return received


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
