import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Optional
from rich.live import Live
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.progress_bar import ProgressBar
from rich.text import Text
from vbt.ui.state import UIState
from vbt.domain.models import ItemStatus, WorkItem

STATUS_ICONS = {
    ItemStatus.COMPLETED: ("✓", "green"),
    ItemStatus.FAILED: ("✗", "red"),
    ItemStatus.SKIPPED: ("»", "yellow"),
}


class Dashboard:
    """Live terminal view of one batch: status bar, progress, active item, activity feed."""

    def __init__(self, state: UIState, console: Optional[Console] = None, refresh_per_second: int = 4):
        self.state = state
        self.console = console or Console()
        self.refresh_per_second = refresh_per_second
        self.logger = logging.getLogger(__name__)
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    # --- Formatters ---

    def format_size(self, size: int) -> str:
        """Format size: 123B, 1.2KB, 45.1MB, 3.2GB. Negative sizes keep their sign."""
        if size == 0:
            return "0B"
        sign = "-" if size < 0 else ""
        units = ['B', 'KB', 'MB', 'GB', 'TB']
        idx = 0
        val = float(abs(size))
        while val >= 1024.0 and idx < len(units) - 1:
            val /= 1024.0
            idx += 1
        if idx == 0:
            return f"{sign}{int(val)}B"
        return f"{sign}{val:.1f}{units[idx]}"

    def format_time(self, seconds: Optional[float]) -> str:
        """Format time: 59s, 01m 01s, 1h 01m."""
        if seconds is None:
            return "--:--"
        if seconds < 60:
            return f"{int(seconds)}s"
        if seconds < 3600:
            return f"{int(seconds // 60):02d}m {int(seconds % 60):02d}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60):02d}m"

    # --- Panels ---

    def _status_text(self) -> Text:
        if self.state.finished:
            if self.state.cancelled:
                return Text("STOPPED", style="bold red")
            return Text("FINISHED", style="bold green")
        if self.state.paused:
            if self.state.low_disk:
                return Text("PAUSED: LOW DISK SPACE", style="bold red")
            return Text("PAUSED", style="bold yellow")
        return Text("RUNNING", style="bold cyan")

    def _generate_top_bar(self) -> Panel:
        with self.state._lock:
            grid = Table.grid(expand=True)
            grid.add_column(ratio=1)
            grid.add_column(justify="right")
            mode = self.state.mode.upper() if self.state.mode else "-"
            grid.add_row(
                Text.assemble(self._status_text(), "  •  ", f"Mode: {mode}"),
                f"Saved: {self.format_size(self.state.bytes_saved)}",
            )
        return Panel(grid, title=self.state.ui_title, border_style="blue")

    def _generate_progress(self) -> Panel:
        with self.state._lock:
            total = self.state.total_items
            done = self.state.processed_count
            elapsed_str = "--:--"
            if self.state.processing_start_time:
                elapsed = (datetime.now() - self.state.processing_start_time).total_seconds()
                elapsed_str = self.format_time(elapsed)

            bar = ProgressBar(total=max(total, 1), completed=done, width=None)
            pct = (done / total * 100) if total else 0.0
            bar_grid = Table.grid(padding=(0, 1))
            bar_grid.add_row(bar, f"{done}/{total}", "•", f"{pct:.1f}%", "•", elapsed_str)
            header = (
                f"Done: {self.state.completed_count} • Failed: {self.state.failed_count} "
                f"• Skipped: {self.state.skipped_count}"
            )
        return Panel(Group(header, bar_grid), title="PROGRESS", border_style="cyan")

    def _render_active_item(self, item: WorkItem) -> RenderableType:
        name = Text(item.filename, overflow="ellipsis", no_wrap=True)
        if item.custom_settings_badge:
            name.append(f"  [{item.custom_settings_badge}]", style="magenta")

        if item.show_indeterminate:
            detail = Text("Starting...", style="dim")
            bar = ProgressBar(total=100, completed=0, pulse=True, width=None)
        else:
            detail = Text(
                f"{item.progress:.1f}% • {self.state.current_speed} • {self.state.current_fps} fps • {item.eta}",
                style="dim",
            )
            bar = ProgressBar(total=100, completed=item.progress, width=None)
        return Group(name, bar, detail)

    def _generate_active_panel(self) -> Panel:
        with self.state._lock:
            item = self.state.active_item
            if item is None:
                content: RenderableType = Text("Idle", style="dim")
                title = "ACTIVE"
            else:
                content = self._render_active_item(item)
                title = f"ACTIVE ({self.state.active_index}/{self.state.total_items})"
        return Panel(content, title=title, border_style="green")

    def _generate_activity_panel(self) -> Panel:
        with self.state._lock:
            table = Table.grid(padding=(0, 1), expand=True)
            table.add_column(width=2)
            table.add_column(ratio=1, no_wrap=True, overflow="ellipsis")
            table.add_column(justify="right")
            for item in self.state.recent_items:
                icon, style = STATUS_ICONS.get(item.status, ("•", "white"))
                if item.status == ItemStatus.COMPLETED and item.output_size_bytes is not None:
                    info = f"{self.format_size(item.size_bytes)} → {self.format_size(item.output_size_bytes)}"
                elif item.status == ItemStatus.FAILED:
                    info = item.error_message or "failed"
                else:
                    info = "skipped"
                table.add_row(Text(icon, style=style), item.filename, Text(info, style="dim"))
            if not self.state.recent_items:
                table.add_row("", Text("Nothing finished yet", style="dim"), "")
        return Panel(table, title="ACTIVITY", border_style="magenta")

    def _generate_footer(self) -> RenderableType:
        action = self.state.get_last_action()
        keys = Text("[P] pause/resume  [S] stop  [Ctrl+C] abort", style="dim")
        if action:
            keys.append(f"   {action}", style="bold yellow")
        return keys

    def create_display(self) -> RenderableType:
        return Group(
            self._generate_top_bar(),
            self._generate_progress(),
            self._generate_active_panel(),
            self._generate_activity_panel(),
            self._generate_footer(),
        )

    # --- Lifecycle ---

    def _refresh_loop(self):
        while not self._stop_refresh.is_set():
            if self._live:
                try:
                    display = self.create_display()
                    with self._ui_lock:
                        self._live.update(display)
                except Exception as e:
                    # A render glitch must not kill the refresh thread
                    self.logger.debug(f"UI refresh failed: {e}")
            time.sleep(1.0 / self.refresh_per_second)

    @contextmanager
    def suspended(self):
        """Stop live redraws while something else owns the terminal (prompts)."""
        with self._ui_lock:
            live = self._live
            if live is not None:
                live.stop()
        try:
            yield
        finally:
            with self._ui_lock:
                if live is not None and self._live is live:
                    live.start()

    def start(self):
        self._live = Live(self.create_display(), console=self.console,
                          refresh_per_second=self.refresh_per_second)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            # Final update to show FINISHED/STOPPED state
            with self._ui_lock:
                self._live.update(self.create_display())
                self._live.stop()
            self._live = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
