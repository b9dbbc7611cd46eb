"""FastAPI route handlers."""

from fastapi import Request, Response

from core.config import Config
from core.request_types import RequestContext
from ui.log_utils import write_incoming_log


def build_context(request: Request) -> RequestContext:
    """Wrap the Starlette request for the pipeline; the body stays unread."""
    return RequestContext(
        method=request.method.upper(),
        path=_raw_path(request),
        query=request.url.query,
        headers=request.headers,
        stream=request.stream(),
        is_disconnected=request.is_disconnected,
    )


async def handle_bridge(request: Request, config: Config) -> Response:
    """Run any inbound request through the bridge pipeline."""
    ctx = build_context(request)
    bridge = request.app.state.bridge_service
    response = await bridge.handle(ctx)

    if config.bridge.debug:
        body = ctx.parsed_body if ctx.parsed_body is not None else _preview(ctx.raw_body)
        write_incoming_log(
            ctx.method,
            ctx.target_path,
            dict(request.headers),
            body,
            status=response.status_code,
            stage=ctx.state.get("stage"),
        )
    return response


def _raw_path(request: Request) -> str:
    """Path exactly as received, percent-escapes intact."""
    raw = request.scope.get("raw_path")
    if raw:
        return raw.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def _preview(raw: bytes | None, limit: int = 2048) -> str | None:
    if raw is None:
        return None
    return raw[:limit].decode("utf-8", errors="replace")
