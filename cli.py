"""CLI entry point for the HTTPS bridge."""

import sys
from datetime import datetime

from rich.console import Console

from app import create_app
from auth import print_auth_status
from core.config import ENV_FILE, Config, load_config
from core.exceptions import ConfigurationError
from ui.console import ConsoleLogger
from ui.dashboard import Dashboard
from ui.log_utils import clear_logs, mask, write_cli_log

console = Console()


def main():
    """Main CLI entry point."""
    args = sys.argv[1:]

    if args and args[0] in ("--help", "-h"):
        _print_help()
        return

    if args and args[0] in ("--check", "--auth"):
        if not print_auth_status():
            sys.exit(1)
        return

    try:
        config = load_config()
    except ConfigurationError as e:
        console.print(f"[red][ERROR][/red] {e}")
        console.print(f"[dim]Set it in the environment or in {ENV_FILE}[/dim]")
        sys.exit(1)

    if args and args[0] == "--config":
        _print_config(config)
        return

    use_dashboard = "--dashboard" in args

    import uvicorn

    clear_logs()
    if use_dashboard:
        logger = Dashboard(config)
    else:
        logger = ConsoleLogger(console)
        _print_banner(config)

    app = create_app(config, logger)

    uvicorn_config = uvicorn.Config(
        app,
        host=config.bridge.host,
        port=config.bridge.port,
        log_level=config.bridge.log_level,
        timeout_keep_alive=config.limits.keep_alive_timeout,
    )
    server = uvicorn.Server(uvicorn_config)

    if use_dashboard:
        logger.start()
    start_time = datetime.now()
    write_cli_log("STARTUP", "Bridge started", port=config.bridge.port, target=config.upstream.base_url)
    try:
        server.run()
    finally:
        duration = datetime.now() - start_time
        write_cli_log("SHUTDOWN", "Bridge stopped", duration=str(duration))
        if use_dashboard:
            logger.stop()


def _print_banner(config: Config) -> None:
    console.print(f"[bold cyan]Bridge running on port {config.bridge.port}[/bold cyan]")
    console.print(f"Forwarding to [bold]{config.upstream.base_url}[/bold]")
    if not config.auth.enabled:
        console.print("[yellow]Open mode:[/yellow] no bridge key required")
    if config.cors.allowed_origins:
        console.print(f"CORS allowed origins: {', '.join(config.cors.allowed_origins)}")


def _print_config(config: Config) -> None:
    data = config.model_dump(mode="json")
    if data["auth"]["key"]:
        data["auth"]["key"] = mask(data["auth"]["key"])
    console.print_json(data=data)


def _print_help():
    """Print help message."""
    help_text = """
[bold cyan]HTTPS Bridge[/bold cyan]

Forwards authenticated requests to a fixed plain-HTTP upstream.

[bold]Usage:[/bold]
    bridge                 Start with console logging
    bridge --dashboard     Start with live dashboard
    bridge --check         Check gate configuration
    bridge --config        Show effective configuration
    bridge --help          Show this help

[bold]Environment:[/bold]
    PORT, HOST, TARGET_API, BRIDGE_KEY, BRIDGE_AUTH_MODE (diagnostic|strict|open),
    ALLOWED_ORIGINS, PROXY_TIMEOUT, MAX_BODY_SIZE, KEEP_ALIVE_TIMEOUT,
    PROXY_LOG_LEVEL, BRIDGE_DEBUG
"""
    console.print(help_text)


if __name__ == "__main__":
    main()
