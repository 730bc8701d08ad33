"""systemosc - live terminal display (Textual)."""

from datetime import datetime

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.containers import Vertical
from textual.widgets import Footer, Static

from systemosc.models import CpuSnapshot, SendResult, SinkKind
from systemosc.scheduler import CycleScheduler
from systemosc.status import LEVEL_COLORS, StatusProjection, usage_level


def format_time(moment: datetime | None) -> str:
    """Local wall-clock time, or N/A."""
    if moment is None:
        return "N/A"
    return moment.astimezone().strftime("%H:%M:%S")


def colored_percent(value: float, bold: bool = False) -> str:
    color = LEVEL_COLORS[usage_level(value)]
    style = f"bold {color}" if bold else color
    return f"[{style}]{value:.2f}%[/{style}]"


class TargetInfo(Static):
    """Header showing where snapshots go."""

    def __init__(self, targets: list[str], interval_ms: int, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._targets = targets
        self._interval_ms = interval_ms

    def on_mount(self) -> None:
        self.update(self.render_info(hostname=None))

    def render_info(self, hostname: str | None) -> str:
        targets = ", ".join(self._targets) if self._targets else "[red]no sinks enabled[/red]"
        host = escape(hostname) if hostname else "…"
        return (
            "[bold cyan]SystemOSC - CPU Monitor[/bold cyan]\n"
            f"Targets: [blue]{targets}[/blue]\n"
            f"[dim]Interval: {self._interval_ms / 1000:g}s | Hostname: {host}[/dim]"
        )


class CpuPanel(Static):
    """CPU model, aggregate usage and per-core bars."""

    DEFAULT_CSS = """
    CpuPanel {
        height: auto;
        padding: 1;
        border-top: solid $primary;
    }
    """

    def on_mount(self) -> None:
        self.update("[yellow]Loading CPU statistics...[/yellow]")

    def update_snapshot(self, snapshot: CpuSnapshot | None) -> None:
        self.update(self.render_snapshot(snapshot))

    @staticmethod
    def render_snapshot(snapshot: CpuSnapshot | None) -> str:
        if snapshot is None:
            return "[yellow]Loading CPU statistics...[/yellow]"

        hw = snapshot.hardware
        usage = snapshot.aggregate
        lines = [
            f"[bold]CPU:[/bold] [dim]{escape(hw.model)} ({hw.core_count} cores @ {hw.clock_speed_ghz:g} GHz)[/dim]",
            "",
            f"Total:  {colored_percent(usage.total, bold=True)}",
            f"User:   {colored_percent(usage.user)}",
            f"System: {colored_percent(usage.system)}",
            f"Idle:   [dim]{usage.idle:.2f}%[/dim]",
            "",
        ]
        for core in snapshot.per_core:
            bar_len = min(int(core.load / 5), 20)  # 20 chars max
            color = LEVEL_COLORS[usage_level(core.load)]
            bar = f"[{color}]█[/{color}]" * bar_len + "[dim]░[/dim]" * (20 - bar_len)
            # Escaped brackets around the bar
            lines.append(f"Core{core.index:<3} \\[{bar}] {core.load:6.2f}%")
        return "\n".join(lines)


class SendPanel(Static):
    """Last send status per sink."""

    DEFAULT_CSS = """
    SendPanel {
        height: auto;
        padding: 1;
        border-top: solid $primary;
    }
    """

    def on_mount(self) -> None:
        self.update("Last Send: [yellow]Initializing...[/yellow]")

    def update_status(self, status: StatusProjection) -> None:
        self.update(self.render_status(status))

    @staticmethod
    def render_status(status: StatusProjection) -> str:
        lines = []
        if status.last_error:
            lines.append(f"[red]Error: {escape(status.last_error)}[/red]")
        if not status.results:
            if not status.last_error:
                lines.append("Last Send: [yellow]Initializing...[/yellow]")
            return "\n".join(lines)

        for kind in SinkKind:
            result: SendResult | None = status.results.get(kind)
            if result is None:
                continue
            label = "OSC UDP" if kind is SinkKind.OSC else "HTTP"
            if result.ok:
                lines.append(
                    f"Last Send: [bold green]OK[/bold green] [dim]({label})[/dim] "
                    f"at [dim]{format_time(result.completed_at)}[/dim]"
                )
            else:
                lines.append(
                    f"Last Send: [bold red]ERROR[/bold red] [dim]({label})[/dim] "
                    f"at [dim]{format_time(result.completed_at)}[/dim]"
                )
                lines.append(f"  [red]{escape(result.detail)}[/red]")
        if status.ticks_skipped:
            lines.append(f"[dim]Skipped ticks: {status.ticks_skipped}[/dim]")
        return "\n".join(lines)


class SystemOscApp(App):
    """Live view of the scheduler's status projection."""

    TITLE = "systemosc"
    SUB_TITLE = "CPU monitor over OSC"

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh_now", "Refresh now"),
    ]

    def __init__(self, scheduler: CycleScheduler) -> None:
        """Initialize the SystemOscApp."""
        super().__init__()
        self._scheduler = scheduler

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Vertical(
            TargetInfo(
                [sink.describe() for sink in self._scheduler.sinks],
                self._scheduler.interval_ms,
                id="target-info",
            ),
            CpuPanel(id="cpu-panel"),
            SendPanel(id="send-panel"),
        )
        yield Footer()

    def on_mount(self) -> None:
        """Start the scheduler when the app is mounted."""
        self._scheduler.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Read the latest status and refresh the panels."""
        self.refresh_from(self._scheduler.status())

    def refresh_from(self, status: StatusProjection) -> None:
        if status.snapshot is not None:
            info = self.query_one("#target-info", TargetInfo)
            info.update(info.render_info(status.snapshot.host_id))
        cpu_panel = self.query_one("#cpu-panel", CpuPanel)
        if status.snapshot is not None:
            cpu_panel.update_snapshot(status.snapshot)
        elif status.cycles_completed:
            cpu_panel.update("[red]No CPU data available[/red]")
        self.query_one("#send-panel", SendPanel).update_status(status)

    def action_refresh_now(self) -> None:
        """Run a cycle now unless one is in flight."""
        if not self._scheduler.trigger():
            self.notify("Cycle already in progress")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._scheduler.stop()
        self.exit()
