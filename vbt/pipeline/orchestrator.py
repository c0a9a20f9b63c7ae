"""Batch orchestrator: runs queued work items through ffmpeg one at a time.

State machine per run::

    IDLE -> RUNNING <-> PAUSED -> COMPLETED | CANCELLED

Key responsibilities:
- Filter the queue (selected, not completed, no prior-run marker)
- Hold the batch while free disk space is below the configured buffer
- Keep the encoder suspended for as long as the batch is paused, including
  encoders spawned after the pause was requested
- Probe, plan and dispatch each item in one of four modes (CRF, two-pass
  target size, stream copy, segment split)
- Forward progress to the item and the EventBus
- Cooperative cancellation: checked at the top of each item, inside the pause
  wait and right after the encoder exits
- Accumulate a BatchResult; per-item failures never stop the batch

Pause, resume and cancel may be called from other threads (keyboard
listener). Item fields are only written from the thread that called `run()`.
"""

import logging
import threading
import time
from functools import partial
from pathlib import Path
from typing import List, Optional, Sequence

from vbt.config.models import BatchRequest, GIB
from vbt.domain.errors import ExecutablePermissionError, LaunchError, ProbeFailure, TranscodeError
from vbt.domain.events import (
    ActionMessage,
    BatchFinished,
    BatchPaused,
    BatchResumed,
    BatchStarted,
    CancelRequested,
    ItemCompleted,
    ItemFailed,
    ItemProgressUpdated,
    ItemSkipped,
    ItemStarted,
    PauseToggleRequested,
)
from vbt.domain.models import (
    BatchResult,
    BatchState,
    ConversionProgress,
    ItemStatus,
    ProcessingMode,
    WorkItem,
)
from vbt.infrastructure.event_bus import EventBus
from vbt.infrastructure.ffmpeg import FFmpegAdapter
from vbt.infrastructure.ffprobe import FFprobeAdapter
from vbt.infrastructure.logging import log_section
from vbt.infrastructure.naming import OutputNamer
from vbt.infrastructure.resource_gate import ResourceGate
from vbt.pipeline.planner import EncodePlan, NO_SPLIT, plan_item
from vbt.ui.notifier import Notifier

MIB = 1024 * 1024

STOP_TITLE = "Stop Processing?"
STOP_QUESTION = (
    "Are you sure you want to stop the compression process? "
    "Any file currently being processed will be incomplete."
)


def format_saved(bytes_saved: int) -> str:
    saved_mb = bytes_saved / MIB
    if saved_mb > 1024:
        return f"{saved_mb / 1024:.2f} GB"
    return f"{saved_mb:.2f} MB"


class BatchOrchestrator:
    """Sequential batch runner.

    Args:
        event_bus: EventBus for item and batch lifecycle events.
        ffmpeg: FFmpegAdapter owning the single encoder subprocess.
        ffprobe: FFprobeAdapter for duration and width queries.
        resource_gate: Reports low free space on the output volume.
        notifier: Surfaces errors, the completion summary and the stop confirmation.
        namer: Output path builder (defaults to OutputNamer()).
        poll_interval: Seconds between checks while paused.
    """

    def __init__(
        self,
        event_bus: EventBus,
        ffmpeg: FFmpegAdapter,
        ffprobe: FFprobeAdapter,
        resource_gate: ResourceGate,
        notifier: Notifier,
        namer: Optional[OutputNamer] = None,
        poll_interval: float = 1.0,
    ):
        self.event_bus = event_bus
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.resource_gate = resource_gate
        self.notifier = notifier
        self.namer = namer or OutputNamer()
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)

        self._state = BatchState.IDLE
        self._state_lock = threading.Lock()
        self._keep_running = threading.Event()
        self._paused = threading.Event()
        self._request: Optional[BatchRequest] = None

        # Transient, UI-facing
        self.current_item: Optional[WorkItem] = None
        self.current_speed = "0x"

        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.event_bus.subscribe(PauseToggleRequested, self._on_pause_toggle)
        self.event_bus.subscribe(CancelRequested, self._on_cancel_requested)

    # ── State ──────────────────────────────────────────────────────────────

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in (BatchState.RUNNING, BatchState.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self._state == BatchState.PAUSED

    def _should_stop(self) -> bool:
        return not self._keep_running.is_set()

    def pause(self, low_disk: bool = False) -> bool:
        """Suspend the active encoder and hold the queue. Returns False if not running."""
        with self._state_lock:
            if self._state != BatchState.RUNNING:
                return False
            self._state = BatchState.PAUSED
            self._paused.set()
            self.ffmpeg.suspend()
        self.logger.info(f"Pause state changed. IsPaused=True (low_disk={low_disk})")
        self.event_bus.publish(BatchPaused(low_disk=low_disk))
        return True

    def resume(self) -> bool:
        """Resume a paused batch unless the disk is still low."""
        with self._state_lock:
            if self._state != BatchState.PAUSED:
                return False
        if self.resource_gate.is_low():
            buffer_gb = self._buffer_gb()
            self.logger.warning("Resume refused: disk space still low")
            self.notifier.notify_error(
                "Resume Blocked",
                f"Still low on disk space (under {buffer_gb:g}GB). "
                "Please free up space before resuming.",
            )
            return False
        with self._state_lock:
            if self._state != BatchState.PAUSED:
                return False
            self._state = BatchState.RUNNING
            self._paused.clear()
            self.ffmpeg.resume()
        self.logger.info("Pause state changed. IsPaused=False")
        self.event_bus.publish(BatchResumed())
        return True

    def _hold_if_paused(self) -> None:
        """Suspend a freshly spawned encoder if the batch is paused.

        Covers pauses that arrived while no process existed (probing, between
        the two passes).
        """
        with self._state_lock:
            if self._state == BatchState.PAUSED:
                self.ffmpeg.suspend()
                self.logger.info("Encoder started while paused; holding it suspended")

    def toggle_pause(self) -> bool:
        if self.is_paused:
            return self.resume()
        return self.pause()

    def cancel(self, confirm: bool = False) -> bool:
        """Stop the batch. The active encoder is killed; no further item starts.

        With `confirm=True` the notifier is asked first and a "no" leaves the
        batch running.
        """
        if not self.is_running:
            return False
        if confirm and not self.notifier.confirm(STOP_TITLE, STOP_QUESTION):
            self.event_bus.publish(ActionMessage(message="Stop cancelled"))
            return False
        self.logger.info("Processing force-stopped by user.")
        self._keep_running.clear()
        self._paused.clear()
        self.ffmpeg.kill()
        self.event_bus.publish(ActionMessage(message="Stopping batch..."))
        return True

    def _on_pause_toggle(self, event: PauseToggleRequested):
        if not self.is_running:
            return
        was_paused = self.is_paused
        if self.toggle_pause():
            self.event_bus.publish(ActionMessage(message="RESUMED" if was_paused else "PAUSED"))

    def _on_cancel_requested(self, event: CancelRequested):
        self.cancel(confirm=event.confirm)

    def _buffer_gb(self) -> float:
        if self._request is None:
            return 0.0
        return self._request.low_disk_buffer_bytes / GIB

    # ── Run ────────────────────────────────────────────────────────────────

    def _filter_queue(self, items: Sequence[WorkItem], request: BatchRequest) -> List[WorkItem]:
        queue = []
        for item in items:
            if not item.selected or item.is_completed:
                continue
            if item.is_invalid and not request.reprocess_optimized:
                self.logger.info(f"SKIP_MARKER: {item.filename} (already optimized)")
                continue
            queue.append(item)
        return queue

    def _preflight(self) -> None:
        try:
            self.ffmpeg.check_ready()
            self.ffprobe.check_ready()
        except LaunchError as e:
            self.logger.error(f"Preflight failed: {e}")
            title = "Platform Permission Error" if isinstance(e, ExecutablePermissionError) else "Missing Dependencies"
            self.notifier.notify_error(title, str(e))
            raise

    def run(self, items: Sequence[WorkItem], request: BatchRequest) -> BatchResult:
        """Process the queue and return the accumulated result.

        Raises LaunchError (or ExecutablePermissionError) when ffmpeg/ffprobe
        cannot be started; every other per-item problem is recorded in the
        result.
        """
        with self._state_lock:
            if self._state in (BatchState.RUNNING, BatchState.PAUSED):
                raise RuntimeError("A batch is already running")

        result = BatchResult()
        queue = self._filter_queue(items, request)
        if not queue:
            self.logger.info("No files to process")
            self.notifier.notify_info("No Selection", "Please select at least one video to process.")
            return result

        self._preflight()

        self._request = request
        self._keep_running.set()
        self._paused.clear()
        with self._state_lock:
            self._state = BatchState.RUNNING

        log_section(self.logger, "Batch Start")
        self.logger.info(f"Videos selected: {len(queue)}")
        self.logger.info(f"Mode: {request.mode.value}")
        self.logger.info(f"Encoder: {request.encoder}")
        self.logger.info(f"Default format: {request.output_format}")
        self.logger.info(f"Strip metadata: {request.strip_metadata}")
        self.event_bus.publish(BatchStarted(total_items=len(queue), mode=request.mode))

        try:
            for index, item in enumerate(queue, start=1):
                if self._should_stop():
                    self.logger.info("Batch cancelled by user.")
                    break
                if not self._wait_while_paused():
                    break
                if not self._wait_for_resources(request):
                    break

                self._process_item(item, index, len(queue), request, result)

            if result.completed_count > 0:
                saved = format_saved(result.bytes_saved)
                log_section(self.logger, "Batch Completed")
                self.logger.info(f"Videos processed: {result.completed_count}")
                self.logger.info(f"Space saved: {saved}")
                self.notifier.notify_info(
                    "Task Completed",
                    f"Successfully processed {result.completed_count} videos.\n\nTotal space saved: {saved}",
                )
        finally:
            result.cancelled = self._should_stop()
            self._keep_running.clear()
            self._paused.clear()
            self.current_item = None
            self.current_speed = "0x"
            with self._state_lock:
                self._state = BatchState.CANCELLED if result.cancelled else BatchState.COMPLETED
            self.logger.info("Batch finished. Application idle.")
            self.event_bus.publish(BatchFinished(
                completed_count=result.completed_count,
                bytes_saved=result.bytes_saved,
                failed_count=len(result.failures),
                cancelled=result.cancelled,
            ))
        return result

    def _wait_while_paused(self) -> bool:
        """Block while paused. Returns False if the batch was cancelled meanwhile."""
        while self._paused.is_set():
            if self._should_stop():
                self.logger.info("User cancelled batch during pause.")
                return False
            time.sleep(self.poll_interval)
        if self._should_stop():
            self.logger.info("Batch cancelled by user.")
            return False
        return True

    def _wait_for_resources(self, request: BatchRequest) -> bool:
        if not self.resource_gate.is_low():
            return True
        buffer_gb = request.low_disk_buffer_bytes / GIB
        self.logger.warning("Low disk space detected. Pausing batch.")
        self.logger.warning(f"Pause reason: Low disk space (< {buffer_gb:g}GB)")
        self.pause(low_disk=True)
        self.notifier.notify_error(
            "Low Disk Space",
            f"Available space is below {buffer_gb:g}GB. "
            "The process has been paused. Please free up space and resume.",
        )
        return self._wait_while_paused()

    # ── Items ──────────────────────────────────────────────────────────────

    def _probe(self, item: WorkItem) -> None:
        if not item.is_duration_loaded:
            try:
                item.duration_seconds = self.ffprobe.get_duration(item.path)
            except ProbeFailure as e:
                self.logger.warning(f"Failed to read duration. File={item.filename} | {e}")
                item.duration_seconds = 0.0
        if item.source_width is None:
            try:
                item.source_width = self.ffprobe.get_width(item.path)
            except ProbeFailure as e:
                self.logger.warning(f"Failed to read video width. File={item.filename} | {e}")
                item.source_width = 0

    def _on_progress(self, item: WorkItem, media_seconds: Optional[float],
                     event: ConversionProgress) -> None:
        item.update_progress(event.percentage, event.speed, event.fps, media_seconds)
        self.current_speed = event.speed
        self.event_bus.publish(ItemProgressUpdated(
            item=item, progress_percent=item.progress, speed=event.speed, fps=event.fps
        ))

    def _process_item(self, item: WorkItem, index: int, total: int,
                      request: BatchRequest, result: BatchResult) -> None:
        filename = item.filename
        log_section(self.logger, f"Processing ({index}/{total}): {filename}")

        item.status = ItemStatus.PROCESSING
        item.error_message = None
        item.reset_progress()
        self.current_item = item
        self.event_bus.publish(ItemStarted(item=item, index=index))

        plan: Optional[EncodePlan] = None
        output_path: Optional[Path] = None
        try:
            self._probe(item)
            original_size = item.path.stat().st_size
            item.size_bytes = original_size
            self.logger.info(f"Duration: {item.duration_seconds:.2f}s")
            self.logger.info(f"Original size: {original_size / MIB:.2f} MB")

            plan = plan_item(item, request, item.source_width)
            self.logger.info(f"Resolution: {plan.resolution} | FPS: {plan.fps} | Mode: {plan.mode.value}")
            if plan.trim is not None:
                self.logger.info(f"Trimming enabled: {plan.trim.start:.2f}s -> {plan.trim.end}")
            if plan.bitrate_cap_kbps:
                self.logger.info(f"Bitrate cap applied: {plan.bitrate_cap_kbps} kbps")

            if plan.mode == ProcessingMode.SPLIT and plan.segment_seconds is NO_SPLIT:
                self._skip_split(item)
                return

            output_path = self._output_path(item, plan, request)
            self.logger.info(f"Output path: {output_path}")
            self._dispatch(item, plan, output_path)

            if self._should_stop():
                if plan.mode != ProcessingMode.SPLIT:
                    self._discard(output_path)
                item.status = ItemStatus.PENDING
                item.reset_progress()
                self.logger.info(f"Cancelled mid-item: {filename}")
                return

            self._finalize(item, plan, request, output_path, original_size, result)
        except LaunchError:
            item.status = ItemStatus.FAILED
            raise
        except Exception as e:
            mode = plan.mode.value if plan else request.mode.value
            self.logger.error(f"Video processing failed | File={filename} | Mode={mode} | Error={e}")
            if output_path is not None and (plan is None or plan.mode != ProcessingMode.SPLIT):
                self._discard(output_path)
            if self._should_stop():
                item.status = ItemStatus.PENDING
                item.reset_progress()
                return
            item.status = ItemStatus.FAILED
            item.error_message = str(e)
            result.record_failure(item, str(e))
            self.event_bus.publish(ItemFailed(item=item, error_message=str(e)))
        finally:
            self.current_item = None

    def _skip_split(self, item: WorkItem) -> None:
        if not item.is_duration_loaded:
            raise TranscodeError("Cannot split: duration unknown")
        self.logger.warning("Split skipped: file already small.")
        item.status = ItemStatus.SKIPPED
        item.update_progress(100, "0x", "0")
        self.event_bus.publish(ItemSkipped(item=item, reason="already below split size"))

    def _output_path(self, item: WorkItem, plan: EncodePlan, request: BatchRequest) -> Path:
        """Path checked after the encoder exits (first segment in split mode)."""
        if plan.mode == ProcessingMode.SPLIT:
            return self.namer.first_segment(item.path)
        if plan.mode == ProcessingMode.COPY:
            return self.namer.crf_path(item.path, 0, request.output_format)
        if plan.mode == ProcessingMode.TARGET_SIZE:
            return self.namer.target_size_path(item.path, plan.target_size_mb, request.output_format)
        return self.namer.crf_path(item.path, plan.crf, request.output_format)

    def _dispatch(self, item: WorkItem, plan: EncodePlan, output_path: Path) -> None:
        on_progress = partial(self._on_progress, item, plan.expected_seconds)
        hooks = dict(should_stop=self._should_stop, on_spawn=self._hold_if_paused)
        mode = plan.mode

        if mode == ProcessingMode.COPY:
            self.ffmpeg.copy(item.path, output_path, plan, on_progress, **hooks)
        elif mode == ProcessingMode.SPLIT:
            self.logger.info(f"Segment time calculated: {plan.segment_seconds:.2f}s")
            pattern = self.namer.split_pattern(item.path)
            self.ffmpeg.split(item.path, pattern, plan, on_progress, **hooks)
        elif mode == ProcessingMode.TARGET_SIZE:
            if plan.video_bitrate_kbps is None:
                raise TranscodeError(f"Cannot target {plan.target_size_mb}MB: duration unknown")
            self.logger.info(f"Target size mode: {plan.target_size_mb} MB (2-pass)")
            self.ffmpeg.compress_target_size(item.path, output_path, plan, on_progress,
                                             **hooks)
        else:
            self.logger.info(f"CRF mode: CRF={plan.crf}")
            self.ffmpeg.compress(item.path, output_path, plan, on_progress, **hooks)

    def _finalize(self, item: WorkItem, plan: EncodePlan, request: BatchRequest,
                  output_path: Path, original_size: int, result: BatchResult) -> None:
        if not output_path.exists():
            raise TranscodeError(f"Output file was not created: {output_path.name}")
        output_size = output_path.stat().st_size
        if output_size == 0:
            raise TranscodeError(f"Output file is empty: {output_path.name}")

        if plan.mode == ProcessingMode.SPLIT:
            # Segment sizes are not summed; savings are approximated
            if item.has_custom_size:
                output_size = item.overrides.target_size_mb * MIB
            else:
                output_size = original_size

        saved = original_size - output_size
        result.completed_count += 1
        result.bytes_saved += saved

        item.output_path = output_path
        item.output_size_bytes = output_size
        item.status = ItemStatus.COMPLETED
        item.update_progress(100, self.current_speed, "0")
        self.logger.info(f"Completed | New size: {output_size / MIB:.2f} MB")
        self.event_bus.publish(ItemCompleted(item=item, bytes_saved=saved))

        if request.delete_original and plan.mode not in (ProcessingMode.COPY, ProcessingMode.SPLIT):
            try:
                item.path.unlink()
                self.logger.info(f"Original deleted: {item.filename}")
            except OSError as e:
                self.logger.error(f"Video deletion failed: {item.filename} | {e}")

    def _discard(self, output_path: Path) -> None:
        try:
            if output_path.exists():
                output_path.unlink()
                self.logger.info(f"Partial output removed: {output_path.name}")
        except OSError as e:
            self.logger.error(f"Could not remove partial output {output_path}: {e}")
