"""Shared-secret authorization gate for inbound requests."""

import hmac

from rich.console import Console
from starlette.datastructures import Headers

from core.config import AuthSettings, Config, load_config
from core.exceptions import AuthError, ConfigurationError, InvalidCredential, MissingCredential
from core.request_types import GateDecision

console = Console()

ALLOWED = GateDecision(allowed=True)


class AuthGate:
    """Check the credential header against the configured secret.

    ``open`` mode allows everything; it is only reachable through an explicit
    ``BRIDGE_AUTH_MODE=open``, never because the secret is missing.
    """

    def __init__(self, settings: AuthSettings) -> None:
        if settings.enabled and not settings.key:
            raise ConfigurationError("Authorization gate enabled without a shared secret")
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def diagnostic(self) -> bool:
        return self._settings.mode == "diagnostic"

    def check(self, headers: Headers) -> GateDecision:
        """Classify the request as allowed, or denied with a reason."""
        if not self.enabled:
            return ALLOWED

        values = headers.getlist(self._settings.header)
        if not values:
            return GateDecision(allowed=False, reason=MissingCredential.reason)
        # Exactly one header value, equal to the secret; Starlette decodes header bytes as latin-1
        if len(values) != 1 or not hmac.compare_digest(
            values[0].encode("latin-1"), self._settings.key.encode("utf-8")
        ):
            return GateDecision(allowed=False, reason=InvalidCredential.reason)
        return ALLOWED

    def enforce(self, headers: Headers) -> None:
        """Raise the matching ``AuthError`` when the request is denied."""
        decision = self.check(headers)
        if decision.allowed:
            return
        if decision.reason == MissingCredential.reason:
            raise MissingCredential(f"Missing {self._settings.header} header")
        raise InvalidCredential(f"Invalid {self._settings.header} header value")

    def error_body(self, error: AuthError) -> dict[str, str]:
        """401 body; the reason is only disclosed in diagnostic mode."""
        body = {"error": error.code}
        if self.diagnostic:
            body["reason"] = error.reason
        return body


def print_auth_status(config: Config | None = None) -> bool:
    """Print the gate mode; returns False when the configuration is unusable."""
    try:
        config = config or load_config()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return False

    mode = config.auth.mode
    if mode == "open":
        console.print("[yellow]Open mode[/yellow]: requests are forwarded without a bridge key")
    else:
        console.print(
            f"[green]Gate enabled[/green] ({mode}), header [bold]{config.auth.header}[/bold]"
        )
    console.print(f"[dim]Target:[/dim] {config.upstream.base_url}")
    return True


def main():
    """CLI entry point for auth check."""
    print_auth_status()


if __name__ == "__main__":
    main()
