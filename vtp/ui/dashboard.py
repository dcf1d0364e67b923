import logging
import threading
from datetime import datetime
from typing import Optional
from rich.live import Live
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.layout import Layout
from rich.progress_bar import ProgressBar
from vtp.ui.state import UIState
from vtp.domain.models import Job, JobStatus

logger = logging.getLogger(__name__)

# Layout Constants
TOP_BAR_LINES = 2  # Service, Queue
FOOTER_LINES = 1   # Last action + counters

STATUS_STYLES = {
    JobStatus.COMPLETED: ("✓", "green"),
    JobStatus.FALLBACK: ("↺", "yellow"),
    JobStatus.FAILED: ("✗", "red"),
}

class Dashboard:
    """Live terminal view of the consumer: queue, active jobs, recent results."""

    def __init__(self, state: UIState, refresh_interval_s: float = 0.5, console: Optional[Console] = None):
        self.state = state
        self.refresh_interval_s = refresh_interval_s
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()
        self._spinner_frame = 0

    # --- Formatters ---

    def format_size(self, size: int) -> str:
        """Format size: 123B, 1.2KB, 45.1MB, 3.2GB."""
        if size == 0:
            return "0B"
        units = ['B', 'KB', 'MB', 'GB', 'TB']
        idx = 0
        val = float(size)
        while val >= 1024.0 and idx < len(units) - 1:
            val /= 1024.0
            idx += 1
        if idx == 0:
            return f"{int(val)}B"
        return f"{val:.1f}{units[idx]}"

    def format_time(self, seconds: Optional[float]) -> str:
        """Format time: 59s, 01m 01s, 1h 01m."""
        if seconds is None:
            return "--:--"
        if seconds < 60:
            return f"{int(seconds)}s"
        if seconds < 3600:
            return f"{int(seconds // 60):02d}m {int(seconds % 60):02d}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60):02d}m"

    def _truncate(self, name: str, max_len: int = 40) -> str:
        """Truncate name as prefix…suffix."""
        if len(name) <= max_len:
            return name
        part_len = (max_len - 1) // 2
        return f"{name[:part_len]}…{name[-part_len:]}"

    # --- Panels ---

    def _generate_top_bar(self) -> Panel:
        with self.state._lock:
            uptime = None
            if self.state.start_time:
                uptime = (datetime.now() - self.state.start_time).total_seconds()
            service = (
                f"[bold]{self.state.ui_title}[/] • {self.state.service_url or 'starting'} • "
                f"workers {self.state.workers} • up {self.format_time(uptime)}"
            )
            capacity = max(self.state.capacity, 1)
            bar = ProgressBar(total=capacity, completed=min(self.state.occupancy, capacity), width=None)
            queue = Table.grid(padding=(0, 1))
            queue.add_row("Queue", bar, f"{self.state.occupancy}/{self.state.capacity}")
        return Panel(Group(service, queue), border_style="cyan")

    def _generate_active_jobs_panel(self) -> Panel:
        spinner_frames = "●○◉◎"
        table = Table.grid(padding=(0, 1), expand=True)
        table.add_column(width=1)
        table.add_column(ratio=1)
        table.add_column(justify="right")
        with self.state._lock:
            jobs = list(self.state.active_jobs)
        for job in jobs:
            spinner = spinner_frames[(self._spinner_frame + hash(job.job_id)) % len(spinner_frames)]
            elapsed = (datetime.now() - job.created_at).total_seconds()
            table.add_row(
                f"[green]{spinner}[/]",
                self._truncate(job.display_name),
                f"{self.format_size(job.size_bytes)} • {self.format_time(elapsed)}",
            )
        if not jobs:
            table.add_row("", "[dim]idle[/]", "")
        return Panel(table, title="ACTIVE JOBS", border_style="cyan")

    def _render_recent(self, job: Job) -> tuple:
        icon, style = STATUS_STYLES.get(job.status, ("?", "white"))
        detail = self.format_time(job.duration_seconds)
        if job.status != JobStatus.COMPLETED and job.error_message:
            detail = self._truncate(job.error_message, 30)
        return (f"[{style}]{icon}[/]", self._truncate(job.display_name), f"[dim]{detail}[/]")

    def _generate_activity_panel(self) -> Panel:
        table = Table.grid(padding=(0, 1), expand=True)
        table.add_column(width=1)
        table.add_column(ratio=1)
        table.add_column(justify="right")
        with self.state._lock:
            jobs = list(self.state.recent_jobs)
        for job in jobs:
            table.add_row(*self._render_recent(job))
        return Panel(table, title="ACTIVITY FEED", border_style="cyan")

    def _generate_footer(self) -> RenderableType:
        with self.state._lock:
            parts = [
                f"[white]in:{self.state.admitted_count}[/]",
                f"[green]ok:{self.state.completed_count}[/]",
            ]
            if self.state.fallback_count:
                parts.append(f"[yellow]fallback:{self.state.fallback_count}[/]")
            if self.state.failed_count:
                parts.append(f"[red]fail:{self.state.failed_count}[/]")
            if self.state.rejected_count:
                parts.append(f"[yellow]503:{self.state.rejected_count}[/]")
            if self.state.duplicate_count:
                parts.append(f"[dim white]dup:{self.state.duplicate_count}[/]")
            counters = " • ".join(parts)
        action = self.state.get_last_action()

        grid = Table.grid(expand=True)
        grid.add_column(width=1)
        grid.add_column(justify="left", ratio=1)
        grid.add_column(justify="right", ratio=1)
        grid.add_column(width=1)
        grid.add_row("", action, counters, "")
        return grid

    def create_display(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="top", size=TOP_BAR_LINES + 2),
            Layout(name="middle"),
            Layout(name="bottom", size=FOOTER_LINES),
        )
        layout["middle"].split_row(Layout(name="active"), Layout(name="activity"))
        layout["top"].update(self._generate_top_bar())
        layout["middle"]["active"].update(self._generate_active_jobs_panel())
        layout["middle"]["activity"].update(self._generate_activity_panel())
        layout["bottom"].update(self._generate_footer())
        return layout

    def _refresh_loop(self):
        while not self._stop_refresh.is_set():
            if self._live:
                self._spinner_frame = (self._spinner_frame + 1) % 4
                try:
                    display = self.create_display()
                    with self._ui_lock:
                        self._live.update(display)
                except Exception as e:
                    logger.debug(f"Dashboard refresh failed: {e}")
            self._stop_refresh.wait(self.refresh_interval_s)

    def start(self):
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=4)
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
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
