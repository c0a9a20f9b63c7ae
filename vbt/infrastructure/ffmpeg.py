import logging
import os
import tempfile
import time
import uuid
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional

from vbt.domain.errors import ExecutionFailure
from vbt.domain.models import ConversionProgress
from vbt.infrastructure.binaries import ensure_executable
from vbt.infrastructure.process import ProcessSupervisor
from vbt.infrastructure.progress import ProgressParser, composite_progress
from vbt.pipeline.planner import EncodePlan, ORIGINAL, TrimRange

NULL_DEVICE = "NUL" if os.name == "nt" else "/dev/null"
AUDIO_BITRATE = "128k"
STDERR_TAIL_LINES = 8

ProgressCallback = Callable[[ConversionProgress], None]


def _fmt_seconds(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def trim_args(trim: Optional[TrimRange]) -> List[str]:
    """Input-side seek so ffmpeg reports time= relative to the trim start."""
    if trim is None:
        return []
    args = ["-ss", _fmt_seconds(trim.start)]
    if trim.end is not None:
        args.extend(["-to", _fmt_seconds(trim.end)])
    return args


def build_video_filters(resolution: str, fps: str) -> List[str]:
    filters = []
    if resolution and resolution != ORIGINAL:
        filters.append(f"scale={resolution}:-2")
    if fps and fps != ORIGINAL and str(fps).isdigit():
        filters.append(f"fps={fps}")
    if not filters:
        return []
    return ["-vf", ",".join(filters)]


def codec_args(encoder: str, crf: int) -> List[str]:
    """Quality flags differ per hardware family; anything unknown falls back to x265."""
    if "nvenc" in encoder:
        return ["-vcodec", encoder, "-preset", "p5", "-rc", "vbr", "-cq", str(crf)]
    if "amf" in encoder:
        return ["-vcodec", encoder, "-rc", "vbr_peak", "-qp_i", str(crf), "-qp_p", str(crf), "-quality", "quality"]
    if "qsv" in encoder:
        return ["-vcodec", encoder, "-preset", "veryfast", "-global_quality", str(crf)]
    return ["-vcodec", "libx265", "-crf", str(crf)]


def metadata_args(strip: bool) -> List[str]:
    return ["-map_metadata", "-1", "-map_chapters", "-1"] if strip else []


def build_encode_args(input_path: Path, output_path: Path, plan: EncodePlan) -> List[str]:
    args = ["-y", *trim_args(plan.trim), "-i", str(input_path)]
    args.extend(build_video_filters(plan.resolution, plan.fps))
    args.extend(codec_args(plan.encoder, plan.crf))
    if plan.bitrate_cap_kbps:
        cap = plan.bitrate_cap_kbps
        args.extend(["-maxrate", f"{cap}k", "-bufsize", f"{cap * 2}k"])
    args.extend(metadata_args(plan.strip_metadata))
    args.append(str(output_path))
    return args


def build_two_pass_args(input_path: Path, output_path: Path, plan: EncodePlan, passlog: str) -> List[List[str]]:
    """Return [pass1_args, pass2_args]. Pass 1 discards its output."""
    if plan.video_bitrate_kbps is None:
        raise ValueError("two-pass encode needs a video bitrate")
    head = ["-y", *trim_args(plan.trim), "-i", str(input_path)]
    head.extend(build_video_filters(plan.resolution, plan.fps))
    rate = ["-c:v", plan.encoder, "-b:v", f"{plan.video_bitrate_kbps}k"]

    first = [*head, *rate, "-pass", "1", "-passlogfile", passlog, "-an", "-f", "null", NULL_DEVICE]
    second = [*head, *rate, "-pass", "2", "-passlogfile", passlog, "-c:a", "aac", "-b:a", AUDIO_BITRATE]
    second.extend(metadata_args(plan.strip_metadata))
    second.append(str(output_path))
    return [first, second]


def build_copy_args(input_path: Path, output_path: Path, trim: Optional[TrimRange] = None) -> List[str]:
    return ["-y", *trim_args(trim), "-i", str(input_path), "-c", "copy", "-map", "0", str(output_path)]


def build_split_args(input_path: Path, pattern: Path, segment_seconds: float) -> List[str]:
    return [
        "-y", "-i", str(input_path),
        "-c", "copy", "-map", "0",
        "-f", "segment",
        "-segment_time", _fmt_seconds(segment_seconds),
        "-reset_timestamps", "1",
        str(pattern),
    ]


class FFmpegAdapter:
    """Runs ffmpeg command lines through a ProcessSupervisor and reports progress."""

    def __init__(self, supervisor: ProcessSupervisor, executable: str = "ffmpeg", debug: bool = False):
        self.supervisor = supervisor
        self.executable = executable
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def check_ready(self) -> None:
        ensure_executable(self.executable)

    def run(
        self,
        args: List[str],
        on_progress: Optional[ProgressCallback] = None,
        expected_seconds: Optional[float] = None,
        pass_number: Optional[int] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        on_spawn: Optional[Callable[[], None]] = None,
    ) -> int:
        """Run one ffmpeg invocation to completion and return its exit code.

        `on_spawn` runs once the process exists, before any output is read.
        """
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {self.executable} {' '.join(args)}")

        self.supervisor.start(self.executable, args)
        # A stop that raced the spawn would otherwise go unnoticed
        if should_stop is not None and should_stop():
            self.supervisor.kill()
        elif on_spawn is not None:
            on_spawn()
        parser = ProgressParser(expected_seconds)
        tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        try:
            for line in self.supervisor.read_output():
                tail.append(line)
                event = parser.feed(line)
                if event is None or on_progress is None:
                    continue
                if pass_number is not None:
                    event = composite_progress(event, pass_number)
                on_progress(event)
        except BaseException:
            self.supervisor.kill()
            self.supervisor.wait()
            raise

        try:
            return self.supervisor.wait()
        except ExecutionFailure:
            for line in tail:
                self.logger.error(f"FFMPEG_STDERR: {line}")
            raise

    def suspend(self) -> None:
        self.supervisor.suspend()

    def resume(self) -> None:
        self.supervisor.resume()

    def kill(self) -> None:
        self.supervisor.kill()

    def compress(self, input_path: Path, output_path: Path, plan: EncodePlan,
                 on_progress: Optional[ProgressCallback] = None,
                 should_stop: Optional[Callable[[], bool]] = None,
                 on_spawn: Optional[Callable[[], None]] = None) -> None:
        start = time.monotonic()
        self.logger.info(f"FFMPEG_START: {input_path.name} (encoder={plan.encoder}, crf={plan.crf})")
        self.run(build_encode_args(input_path, output_path, plan), on_progress,
                 plan.expected_seconds, should_stop=should_stop, on_spawn=on_spawn)
        self.logger.info(f"FFMPEG_END: {input_path.name} elapsed={time.monotonic() - start:.2f}s")

    def compress_target_size(
        self,
        input_path: Path,
        output_path: Path,
        plan: EncodePlan,
        on_progress: Optional[ProgressCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        on_spawn: Optional[Callable[[], None]] = None,
    ) -> None:
        """Two-pass encode; progress is reported as one 0-100 run across both passes."""
        passlog = str(Path(tempfile.gettempdir()) / f"vbt2pass_{uuid.uuid4().hex}")
        first, second = build_two_pass_args(input_path, output_path, plan, passlog)
        start = time.monotonic()
        self.logger.info(
            f"FFMPEG_START: {input_path.name} (2-pass, target={plan.target_size_mb}MB, "
            f"bitrate={plan.video_bitrate_kbps}k)"
        )
        try:
            self.run(first, on_progress, plan.expected_seconds, pass_number=1,
                     should_stop=should_stop, on_spawn=on_spawn)
            if should_stop is not None and should_stop():
                self.logger.info(f"FFMPEG_INTERRUPTED: {input_path.name} (after pass 1)")
                return
            self.run(second, on_progress, plan.expected_seconds, pass_number=2,
                     should_stop=should_stop, on_spawn=on_spawn)
        finally:
            self._cleanup_passlog(passlog)
        self.logger.info(f"FFMPEG_END: {input_path.name} elapsed={time.monotonic() - start:.2f}s")

    def copy(self, input_path: Path, output_path: Path, plan: EncodePlan,
             on_progress: Optional[ProgressCallback] = None,
             should_stop: Optional[Callable[[], bool]] = None,
             on_spawn: Optional[Callable[[], None]] = None) -> None:
        self.logger.info(f"FFMPEG_START: {input_path.name} (stream copy)")
        self.run(build_copy_args(input_path, output_path, plan.trim), on_progress,
                 plan.expected_seconds, should_stop=should_stop, on_spawn=on_spawn)

    def split(self, input_path: Path, pattern: Path, plan: EncodePlan,
              on_progress: Optional[ProgressCallback] = None,
              should_stop: Optional[Callable[[], bool]] = None,
              on_spawn: Optional[Callable[[], None]] = None) -> None:
        if plan.segment_seconds is None:
            raise ValueError("split needs a segment duration")
        self.logger.info(f"FFMPEG_START: {input_path.name} (split, segment={plan.segment_seconds:.2f}s)")
        self.run(build_split_args(input_path, pattern, plan.segment_seconds), on_progress,
                 should_stop=should_stop, on_spawn=on_spawn)

    def _cleanup_passlog(self, passlog: str) -> None:
        prefix = Path(passlog)
        for leftover in prefix.parent.glob(f"{prefix.name}*"):
            try:
                leftover.unlink()
            except OSError as e:
                self.logger.warning(f"Could not remove pass log {leftover}: {e}")
