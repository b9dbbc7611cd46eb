"""Shared fixtures: a recording logger, a fake upstream and a bridge test client."""

from collections.abc import Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app
from core.config import Config, load_config

BRIDGE_KEY = "s3cret-bridge-key"
TARGET = "http://upstream.test:5127"


def make_config(**env: str) -> Config:
    """Config from a fake environment; a bridge key and target are preset."""
    environ = {"BRIDGE_KEY": BRIDGE_KEY, "TARGET_API": TARGET}
    environ.update(env)
    return load_config(environ)


def upstream_response(
    status: int = 200,
    body: bytes = b"",
    headers: list[tuple[str, str]] | dict[str, str] | None = None,
) -> httpx.Response:
    """Streamed upstream response, as a real transport would produce it."""
    headers = list(headers.items()) if isinstance(headers, dict) else list(headers or [])
    if not any(key.lower() == "content-length" for key, _ in headers):
        headers.append(("content-length", str(len(body))))
    return httpx.Response(status, headers=headers, stream=httpx.ByteStream(body))


class RecordingLogger:
    """RequestLogger that keeps every call for assertions."""

    def __init__(self) -> None:
        self.forwarded: list[tuple[str, str, int]] = []
        self.denied: list[tuple[str, str, str]] = []
        self.errors: list[tuple[str, int, str]] = []

    def log_forward(self, method: str, path: str, status: int, *, elapsed_ms: float) -> None:
        self.forwarded.append((method, path, status))

    def log_denied(self, method: str, path: str, reason: str) -> None:
        self.denied.append((method, path, reason))

    def log_error(self, route: str, status: int, message: str) -> None:
        self.errors.append((route, status, message))


class FakeUpstream:
    """Records every outbound request and answers with ``respond``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[bytes] = []
        self.respond: Callable[[httpx.Request], httpx.Response] = lambda request: upstream_response(
            200, b'{"ok":true}', {"content-type": "application/json"}
        )

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(await request.aread())
        self.requests.append(request)
        return self.respond(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    """Keep CLI and debug logs out of the working directory."""
    monkeypatch.setattr("ui.log_utils.LOG_ROOT", tmp_path / "logs")
    monkeypatch.setattr("ui.log_utils.CLI_LOG_FILE", tmp_path / "logs" / "bridge.log")
    return tmp_path / "logs"


@pytest.fixture
def logger():
    return RecordingLogger()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def make_client(logger, upstream):
    """Factory for bridge test clients; closed at teardown."""
    opened = []

    def _make(config: Config | None = None) -> TestClient:
        app = create_app(config or make_config(), logger, transport=httpx.MockTransport(upstream))
        client = TestClient(app)
        client.__enter__()
        opened.append(client)
        return client

    yield _make
    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def auth_headers():
    return {"x-bridge-key": BRIDGE_KEY}
