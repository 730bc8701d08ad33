"""Command line entry points for systemosc."""

import signal
import threading
from datetime import datetime
from typing import Any

import httpx
import typer
from pythonosc.dispatcher import Dispatcher
from pythonosc.osc_server import BlockingOSCUDPServer
from rich.console import Console
from rich.markup import escape

from systemosc.app import SystemOscApp
from systemosc.collector import SnapshotCollector
from systemosc.config import Settings, load_settings
from systemosc.errors import ConfigurationError
from systemosc.http_api import HttpResponder, create_app
from systemosc.logger import configure_logging, get_logger
from systemosc.scheduler import CycleScheduler
from systemosc.sinks import HttpSink, OscSink, Sink, SnapshotStore
from systemosc.status import LEVEL_COLORS, usage_bar, usage_level

log = get_logger(__name__)
console = Console(stderr=True)
stdout = Console()
app = typer.Typer(help="Republish host CPU utilization over OSC and HTTP", no_args_is_help=True)


def build_sinks(settings: Settings) -> list[Sink]:
    """
    Create the sinks enabled in ``settings``.

    Raises:
        ConfigurationError: The HTTP endpoint could not be started.
    """
    sinks: list[Sink] = []
    if settings.osc_enabled:
        sinks.append(
            OscSink.from_settings(
                settings.osc_host, settings.osc_port, timeout=settings.sink_timeout_seconds
            )
        )
    if settings.http_enabled:
        store = SnapshotStore()
        responder = HttpResponder(create_app(store), settings.http_host, settings.http_port)
        try:
            responder.start()
        except ConfigurationError:
            for sink in sinks:
                sink.close()
            raise
        sinks.append(HttpSink(store, responder, timeout=settings.sink_timeout_seconds))
    return sinks


def _warn_about_settings(settings: Settings) -> None:
    if not settings.enabled_sinks():
        console.print("[yellow]WARNING: No sinks enabled (OSC_ENABLED and HTTP_ENABLED are off)[/yellow]")
        log.warning("no_sinks_enabled")
    if settings.osc_enabled and settings.uses_default_osc_target():
        console.print("[yellow]WARNING: Using default OSC settings (localhost:9877)[/yellow]")
        console.print("Set OSC_HOST and OSC_PORT in .env file for custom configuration")


def _run_daemon(scheduler: CycleScheduler) -> None:
    """Run headless until SIGINT or SIGTERM."""
    stop_requested = threading.Event()

    def _handle_signal(signum, frame) -> None:
        log.info("signal_received", signal=signal.Signals(signum).name)
        stop_requested.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    try:
        while not stop_requested.wait(timeout=0.5):
            pass
    finally:
        scheduler.stop()


@app.command()
def run(
    daemon: bool = typer.Option(
        False, "--daemon", help="Run headless and log one line per cycle instead of the live display"
    ),
) -> None:
    """Sample CPU utilization and publish it to the configured sinks."""
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2)

    # Console logging would draw over the live display
    configure_logging(settings.log_level, settings.log_file, console=daemon)
    _warn_about_settings(settings)

    try:
        sinks = build_sinks(settings)
    except ConfigurationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2)

    scheduler = CycleScheduler(SnapshotCollector(), sinks, interval_ms=settings.interval_ms)
    if daemon:
        _run_daemon(scheduler)
        return

    try:
        SystemOscApp(scheduler).run()
    finally:
        scheduler.stop()


def format_received(address: str, args: tuple[Any, ...]) -> str:
    values = " ".join(repr(a) if isinstance(a, str) else str(a) for a in args)
    return f"[{datetime.now().strftime('%H:%M:%S')}] {address} {values}"


@app.command()
def listen(
    host: str = typer.Option("0.0.0.0", help="Address to bind"),
    port: int = typer.Option(9877, help="UDP port to listen on"),
) -> None:
    """Print OSC messages as they arrive (test receiver for the OSC stream)."""

    def _print_message(address: str, *args: Any) -> None:
        console.print(format_received(address, args), markup=False, highlight=False)
        if address == "/cpu/timestamp":
            console.print("=" * 60)

    dispatcher = Dispatcher()
    dispatcher.set_default_handler(_print_message)
    server = BlockingOSCUDPServer((host, port), dispatcher)
    console.print(f"Listening for OSC on udp://{host}:{port} (Ctrl+C to stop)")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        console.print("Stopped")
    finally:
        server.server_close()


def render_entries(entries: list[dict[str, Any]]) -> str:
    """Render the HTTP endpoint's body as total + per-core bars."""
    total: float | None = None
    cores: list[tuple[int, float]] = []
    for item in entries:
        name = item.get("name")
        if not isinstance(name, str):
            continue
        value = item.get("value")
        if name == "/cpu/usage/total" and isinstance(value, (int, float)):
            total = float(value)
        elif name.startswith("/cpu/core/") and name.endswith("/load") and isinstance(value, (int, float)):
            index = name.split("/")[3]
            if index.isdigit():
                cores.append((int(index), float(value)))

    if total is None:
        return "[red]No total CPU usage in response[/red]"

    color = LEVEL_COLORS[usage_level(total)]
    lines = [f"CPU [{color}]{total:.0f}%[/{color}] {usage_bar(total)}"]
    for index, load in sorted(cores):
        lines.append(f"  C{index:<3} {usage_bar(load)} {load:5.1f}%")
    return "\n".join(lines)


@app.command()
def status(
    host: str = typer.Option("localhost", help="Host serving the HTTP endpoint"),
    port: int = typer.Option(3000, envvar="HTTP_PORT", help="HTTP endpoint port"),
    timeout: float = typer.Option(2.0, help="Request timeout in seconds"),
) -> None:
    """Poll the HTTP endpoint once and print the current CPU usage."""
    url = f"http://{host}:{port}/"
    try:
        response = httpx.get(url, timeout=timeout)
    except httpx.HTTPError as exc:
        console.print(f"[red]Cannot reach {url}: {escape(str(exc))}[/red]")
        raise typer.Exit(code=1)

    if response.status_code == 503:
        console.print("[yellow]No data available yet[/yellow]")
        raise typer.Exit(code=1)
    if response.status_code != 200:
        console.print(f"[red]Unexpected response {response.status_code} from {url}[/red]")
        raise typer.Exit(code=1)

    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, list) or not all(isinstance(item, dict) for item in body):
        console.print(f"[red]Unexpected response body from {url}[/red]")
        raise typer.Exit(code=1)

    stdout.print(render_entries(body))


def main() -> None:
    """Entry point for the systemosc command."""
    app()


if __name__ == "__main__":
    main()
