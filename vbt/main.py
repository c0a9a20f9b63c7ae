import os
import sys
import typer
from pathlib import Path
from typing import List, Optional

from vbt.config.loader import load_config
from vbt.config.models import AppConfig, BatchRequest
from vbt.domain.errors import LaunchError
from vbt.domain.models import ProcessingMode, WorkItem
from vbt.infrastructure.binaries import resolve_executable
from vbt.infrastructure.event_bus import EventBus
from vbt.infrastructure.ffmpeg import FFmpegAdapter
from vbt.infrastructure.ffprobe import FFprobeAdapter
from vbt.infrastructure.file_catalog import FileCatalog
from vbt.infrastructure.logging import setup_logging
from vbt.infrastructure.process import ProcessSupervisor
from vbt.infrastructure.resource_gate import DiskSpaceGate
from vbt.pipeline.orchestrator import BatchOrchestrator
from vbt.ui.dashboard import Dashboard
from vbt.ui.manager import UIManager
from vbt.ui.notifier import ConsoleNotifier
from vbt.ui.state import UIState

DEFAULT_CONFIG_PATH = Path("conf/vbt.yaml")

app = typer.Typer(help="VBT (Video Batch Transcoder)")


def build_work_items(config: AppConfig, paths: List[Path]) -> List[WorkItem]:
    """Wrap scanned paths as WorkItems, attaching per-file overrides from `items:`."""
    items = []
    for path in paths:
        try:
            size = path.stat().st_size
        except OSError:
            continue
        item = WorkItem(path=path, size_bytes=size)
        overrides = config.items.get(path.name)
        if overrides is not None:
            item.overrides = overrides.to_overrides()
        items.append(item)
    return items


def _start_keyboard(bus: EventBus):
    # termios based listener; only meaningful on an interactive POSIX terminal
    if os.name == "nt" or not sys.stdin.isatty():
        return None
    from vbt.ui.keyboard import KeyboardListener

    keyboard = KeyboardListener(bus)
    keyboard.start()
    return keyboard


@app.command()
def transcode(
    root: Path = typer.Argument(..., help="Folder to scan (recursively) for videos"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config (default: conf/vbt.yaml if present)"),
    mode: Optional[ProcessingMode] = typer.Option(None, "--mode", "-m", help="crf | target | copy | split"),
    crf: Optional[int] = typer.Option(None, "--crf", help="Override constant rate factor (0-51)"),
    encoder: Optional[str] = typer.Option(None, "--encoder", "-e", help="Encoder id (libx265, hevc_nvenc, ...) or label"),
    resolution: Optional[str] = typer.Option(None, "--resolution", "-r", help="Target width in pixels or label"),
    fps: Optional[str] = typer.Option(None, "--fps", help="Original, 60, 30 or 24"),
    target_size: Optional[int] = typer.Option(None, "--target-size", help="Target size in MB (target mode)"),
    split_size: Optional[int] = typer.Option(None, "--split-size", help="Segment size in MB (split mode)"),
    output_format: Optional[str] = typer.Option(None, "--output-format", "-f", help="Output container extension"),
    delete_original: Optional[bool] = typer.Option(None, "--delete-original/--keep-original", help="Delete sources after a successful encode"),
    strip_metadata: Optional[bool] = typer.Option(None, "--strip-metadata/--keep-metadata", help="Drop container metadata"),
    reprocess: bool = typer.Option(False, "--reprocess", help="Also process files that already carry an output marker"),
    buffer_gb: Optional[float] = typer.Option(None, "--buffer-gb", help="Pause when free space drops below this many GB"),
    bin_dir: Optional[Path] = typer.Option(None, "--bin-dir", help="Directory holding ffmpeg/ffprobe (default: PATH)"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (default: <root>/transcode.log)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Transcode every video under ROOT, one file at a time."""
    if not root.is_dir():
        typer.secho(f"Error: {root} is not a directory.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    orchestrator: Optional[BatchOrchestrator] = None
    try:
        if config_path is not None:
            config = load_config(config_path)
        elif DEFAULT_CONFIG_PATH.exists():
            config = load_config(DEFAULT_CONFIG_PATH)
        else:
            config = AppConfig()

        # Apply CLI overrides (re-validated through the model)
        overrides = {}
        if mode is not None: overrides["mode"] = mode
        if crf is not None: overrides["crf"] = crf
        if encoder is not None: overrides["encoder"] = encoder
        if resolution is not None: overrides["resolution"] = resolution
        if fps is not None: overrides["fps"] = fps
        if target_size is not None: overrides["target_size_mb"] = target_size
        if split_size is not None: overrides["split_size_mb"] = split_size
        if output_format is not None: overrides["output_format"] = output_format
        if delete_original is not None: overrides["delete_original"] = delete_original
        if strip_metadata is not None: overrides["strip_metadata"] = strip_metadata
        if reprocess: overrides["reprocess_optimized"] = True
        if buffer_gb is not None: overrides["low_disk_buffer_gb"] = buffer_gb
        if debug: overrides["debug"] = True
        if overrides:
            general = config.general.model_dump()
            general.update(overrides)
            config.general = type(config.general).model_validate(general)

        logger = setup_logging(root, debug=config.general.debug, log_path=log_path)
        request = BatchRequest.from_config(config.general)
        logger.info(f"VBT started: root={root}")
        logger.info(
            f"Config: mode={request.mode.value}, crf={request.crf}, encoder={request.encoder}, "
            f"resolution={request.resolution}, fps={request.fps}, debug={config.general.debug}"
        )

        total_bytes, paths = FileCatalog(config.general.extensions).scan(root)
        logger.info(f"Scan: {len(paths)} videos, {total_bytes} bytes under {root}")
        items = build_work_items(config, paths)

        try:
            ffmpeg_path = resolve_executable("ffmpeg", bin_dir)
            ffprobe_path = resolve_executable("ffprobe", bin_dir)
        except LaunchError as e:
            logger.error(f"Executable lookup failed: {e}")
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        bus = EventBus()
        ui_state = UIState(activity_feed_max_items=config.ui.activity_feed_max_items)
        UIManager(bus, ui_state)
        dashboard = Dashboard(ui_state, refresh_per_second=config.ui.refresh_per_second)
        notifier = ConsoleNotifier(console=dashboard.console, suspend_display=dashboard.suspended)

        ffmpeg = FFmpegAdapter(ProcessSupervisor(), executable=ffmpeg_path, debug=config.general.debug)
        ffprobe = FFprobeAdapter(executable=ffprobe_path)
        gate = DiskSpaceGate(root, request.low_disk_buffer_bytes)
        orchestrator = BatchOrchestrator(
            event_bus=bus,
            ffmpeg=ffmpeg,
            ffprobe=ffprobe,
            resource_gate=gate,
            notifier=notifier,
            poll_interval=config.general.poll_interval_s,
        )

        keyboard = _start_keyboard(bus)
        try:
            with dashboard:
                result = orchestrator.run(items, request)
        finally:
            if keyboard:
                keyboard.stop()

        if result.failures:
            typer.secho(f"{len(result.failures)} file(s) failed:", fg=typer.colors.YELLOW)
            for failure in result.failures:
                typer.secho(f"  {failure.path.name}: {failure.reason}", fg=typer.colors.YELLOW)
        if result.cancelled:
            typer.secho("Batch stopped by user.", fg=typer.colors.YELLOW)
            raise typer.Exit(code=130)

    except KeyboardInterrupt:
        if orchestrator is not None:
            orchestrator.cancel()
        typer.secho("\n✓ Transcoding stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except LaunchError:
        # Already surfaced by the notifier
        raise typer.Exit(code=1)

    except Exception as e:
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
