"""Line-oriented console logger for headless deployments."""

from datetime import datetime
from threading import Lock

from rich.console import Console
from rich.markup import escape

from ui.log_utils import write_cli_log


class ConsoleLogger:
    """Print one line per request outcome and mirror it to the CLI log."""

    def __init__(self, console: Console | None = None, *, quiet: bool = False) -> None:
        self.console = console or Console(log_path=False)
        self.quiet = quiet
        self._lock = Lock()
        self.counts = {"forwarded": 0, "denied": 0, "failed": 0}

    def log_forward(
        self,
        method: str,
        path: str,
        status: int,
        *,
        elapsed_ms: float,
    ) -> None:
        with self._lock:
            self.counts["forwarded"] += 1
        style = "green" if status < 400 else "yellow" if status < 500 else "red"
        self._print(
            f"[{style}]{status}[/{style}] {method} {escape(path)} [dim]{elapsed_ms:.0f}ms[/dim]"
        )
        write_cli_log("FORWARD", f"{method} {path}", status=status, ms=f"{elapsed_ms:.0f}")

    def log_denied(self, method: str, path: str, reason: str) -> None:
        with self._lock:
            self.counts["denied"] += 1
        self._print(f"[yellow]401[/yellow] {method} {escape(path)} [dim]{reason}[/dim]")
        write_cli_log("DENIED", f"{method} {path}", reason=reason)

    def log_error(self, route: str, status: int, message: str) -> None:
        with self._lock:
            self.counts["failed"] += 1
        self._print(f"[red]{status}[/red] {route}: {escape(message)}")
        write_cli_log("ERROR", message[:200], route=route, status=status)

    def _print(self, line: str) -> None:
        if self.quiet:
            return
        timestamp = datetime.now().strftime("%H:%M:%S")
        self.console.print(f"[dim]{timestamp}[/dim] {line}")
