"""Real-time CLI dashboard for bridge monitoring."""

from collections import deque
from datetime import datetime
from threading import Lock

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.config import Config
from ui.log_utils import write_cli_log

console = Console()


class RequestInfo:
    """Info about a single forwarded or rejected request."""

    def __init__(self, method: str, path: str, status: int, note: str, timestamp: datetime):
        self.method = method
        self.path = path[:60] + "..." if len(path) > 60 else path
        self.status = status
        self.note = note
        self.timestamp = timestamp


class Dashboard:
    """Real-time dashboard showing recent requests, counters and errors."""

    def __init__(self, config: Config):
        self.config = config
        self._lock = Lock()
        self._recent: deque[RequestInfo] = deque(maxlen=10)
        self._request_count = {"forwarded": 0, "denied": 0, "failed": 0}
        self._errors: deque[str] = deque(maxlen=3)
        self._live: Live | None = None

    def start(self) -> "Dashboard":
        """Start the live dashboard."""
        self._live = Live(
            self._build_layout(),
            console=console,
            refresh_per_second=4,
            screen=False,
        )
        self._live.start()
        return self

    def stop(self) -> None:
        """Stop the live dashboard."""
        if self._live:
            self._live.stop()

    def log_forward(
        self,
        method: str,
        path: str,
        status: int,
        *,
        elapsed_ms: float,
    ) -> None:
        """Log a request relayed from the upstream."""
        with self._lock:
            self._request_count["forwarded"] += 1
            self._recent.appendleft(
                RequestInfo(method, path, status, f"{elapsed_ms:.0f}ms", datetime.now())
            )
            self._refresh()
            write_cli_log("FORWARD", f"{method} {path}", status=status, ms=f"{elapsed_ms:.0f}")

    def log_denied(self, method: str, path: str, reason: str) -> None:
        """Log a request stopped by the gate."""
        with self._lock:
            self._request_count["denied"] += 1
            self._recent.appendleft(RequestInfo(method, path, 401, reason, datetime.now()))
            self._refresh()
            write_cli_log("DENIED", f"{method} {path}", reason=reason)

    def log_error(self, route: str, status: int, message: str) -> None:
        """Log an error."""
        with self._lock:
            self._request_count["failed"] += 1
            truncated = message[:50] + "..." if len(message) > 50 else message
            self._errors.appendleft(f"{route} {status}: {truncated}")
            self._refresh()
            write_cli_log("ERROR", message[:200], route=route, status=status)

    def _refresh(self) -> None:
        """Refresh the display."""
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Layout:
        """Build the dashboard layout."""
        layout = Layout()

        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="body"),
            Layout(name="footer", size=5),
        )

        layout["header"].update(self._build_header())
        layout["body"].update(self._build_requests_panel())
        layout["footer"].update(self._build_footer())

        return layout

    def _build_header(self) -> Panel:
        """Build header with stats."""
        stats = Text()
        stats.append("HTTPS Bridge", style="bold cyan")
        stats.append("  |  ")
        stats.append(f"Forwarded: {self._request_count['forwarded']}", style="blue")
        stats.append("  |  ")
        stats.append(f"Denied: {self._request_count['denied']}", style="yellow")
        stats.append("  |  ")
        stats.append(f"Failed: {self._request_count['failed']}", style="red")
        stats.append("  |  ")
        stats.append(f"Port: {self.config.bridge.port}", style="dim")

        return Panel(stats, style="cyan")

    def _build_requests_panel(self) -> Panel:
        """Build recent requests panel."""
        if self._recent:
            table = Table(show_header=True, header_style="bold", expand=True, box=None)
            table.add_column("Time", style="dim", width=8)
            table.add_column("Status", width=6)
            table.add_column("Method", width=7)
            table.add_column("Path", ratio=3)
            table.add_column("Note", ratio=1)

            for info in self._recent:
                style = "green" if info.status < 400 else "yellow" if info.status < 500 else "red"
                table.add_row(
                    info.timestamp.strftime("%H:%M:%S"),
                    Text(str(info.status), style=style),
                    info.method,
                    Text(info.path),
                    Text(info.note),
                )
            content = table
        else:
            content = Text("Waiting for requests...", style="dim")

        return Panel(
            content,
            title=f"[blue]-> {self.config.upstream.base_url}[/blue]",
            border_style="blue",
        )

    def _build_footer(self) -> Panel:
        """Build footer with errors and gate status."""
        if self._errors:
            error_text = Text()
            for err in self._errors:
                error_text.append("! ", style="red bold")
                error_text.append(err + "\n", style="red")
            content = error_text
        else:
            gate = (
                "gate OPEN (no bridge key required)"
                if not self.config.auth.enabled
                else f"gate {self.config.auth.mode}, header {self.config.auth.header}"
            )
            content = Text(gate, style="dim")

        return Panel(content, title="[dim]Status[/dim]", border_style="dim")
