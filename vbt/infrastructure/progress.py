import re
from typing import Iterable, Iterator, Optional

from vbt.domain.models import ConversionProgress

# ffmpeg prints "Duration: 00:10:00.00" once while probing the input, then
# periodic status lines like "frame= 240 fps= 48 ... time=00:00:08.00 ... speed=1.6x".
DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
TIME_RE = re.compile(r"time=\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
SPEED_RE = re.compile(r"speed=\s*(\d+(?:\.\d+)?x)")
FPS_RE = re.compile(r"fps=\s*(\d+(?:\.\d+)?)")

DEFAULT_SPEED = "0x"
DEFAULT_FPS = "0"


def _to_seconds(match: "re.Match[str]") -> float:
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class ProgressParser:
    """Turns encoder diagnostic lines into ConversionProgress samples.

    One instance per subprocess invocation. The total duration is taken from
    the first "Duration:" line; no sample is produced before it is known.
    When `expected_seconds` is given (trimmed input) it replaces the probed
    duration as the denominator, since ffmpeg reports the full source length.
    Reported percentage never goes backwards within one instance.
    """

    def __init__(self, expected_seconds: Optional[float] = None):
        self.expected_seconds = expected_seconds if expected_seconds and expected_seconds > 0 else None
        self.total_seconds = 0.0
        self._last_percentage = 0.0

    def feed(self, line: str) -> Optional[ConversionProgress]:
        if self.total_seconds <= 0:
            duration = DURATION_RE.search(line)
            if duration:
                probed = _to_seconds(duration)
                self.total_seconds = self.expected_seconds or probed

        position = TIME_RE.search(line)
        if not position or self.total_seconds <= 0:
            return None

        percentage = _to_seconds(position) / self.total_seconds * 100
        percentage = min(100.0, max(0.0, percentage))
        percentage = max(percentage, self._last_percentage)
        self._last_percentage = percentage

        speed = SPEED_RE.search(line)
        fps = FPS_RE.search(line)
        return ConversionProgress(
            percentage=percentage,
            speed=speed.group(1) if speed else DEFAULT_SPEED,
            fps=fps.group(1) if fps else DEFAULT_FPS,
        )

    def parse(self, lines: Iterable[str]) -> Iterator[ConversionProgress]:
        for line in lines:
            event = self.feed(line)
            if event is not None:
                yield event


def composite_progress(event: ConversionProgress, pass_number: int) -> ConversionProgress:
    """Map a single-pass sample into the 0-50 (pass 1) or 50-100 (pass 2) half."""
    if pass_number not in (1, 2):
        raise ValueError(f"pass_number must be 1 or 2, got {pass_number}")
    offset = 0.0 if pass_number == 1 else 50.0
    return event.model_copy(update={"percentage": offset + event.percentage * 0.5})
