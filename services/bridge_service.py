"""Request pipeline orchestration for the bridge."""

import time
from typing import Any

from fastapi import Response
from fastapi.responses import JSONResponse

from auth import AuthGate
from core.config import Config
from core.exceptions import (
    AuthError,
    ClientDisconnected,
    ProxyError,
    RequestTooLarge,
    UpstreamError,
)
from core.failures import FailureClassifier, error_response
from core.headers import HeaderBuilder
from core.pipeline import Pipeline
from core.protocols import RequestLogger
from core.request_types import OutboundRequest, RequestContext
from core.transform import BodyTransformer, read_body
from services.upstream import UpstreamClient

HEALTH_PATH = "/health"


def health_report(config: Config) -> dict[str, Any]:
    """Static description of the bridge for liveness probes."""
    return {
        "status": "ok",
        "target": config.upstream.base_url,
        "auth": config.auth.mode,
        "gate_enabled": config.auth.enabled,
        "cors": "unrestricted" if config.cors.unrestricted else list(config.cors.allowed_origins),
    }


class BridgeService:
    """Run each inbound request through health, size, gate, body and forward stages."""

    def __init__(
        self,
        config: Config,
        logger: RequestLogger,
        upstream: UpstreamClient,
        gate: AuthGate,
        transformer: BodyTransformer,
        header_builder: HeaderBuilder,
        classifier: FailureClassifier,
    ) -> None:
        self._config = config
        self._logger = logger
        self._upstream = upstream
        self._gate = gate
        self._transformer = transformer
        self._headers = header_builder
        self._classifier = classifier
        self._health = health_report(config)
        self.pipeline = Pipeline(
            [
                ("health", self.report_health),
                ("size_limit", self.check_declared_size),
                ("authorize", self.authorize),
                ("capture_body", self.capture_body),
                ("forward", self.forward),
            ],
            on_error=self.render_error,
        )

    async def handle(self, ctx: RequestContext) -> Response:
        return await self.pipeline.run(ctx)

    async def report_health(self, ctx: RequestContext) -> Response | None:
        if ctx.method == "GET" and ctx.path == HEALTH_PATH:
            return JSONResponse(content=self._health)
        return None

    async def check_declared_size(self, ctx: RequestContext) -> Response | None:
        """Reject bodies whose declared length is over the cap, before reading them."""
        declared = ctx.headers.get("content-length")
        limit = self._config.limits.max_body_size
        if declared is not None and declared.isdigit() and int(declared) > limit:
            raise RequestTooLarge(f"Request body of {declared} bytes exceeds {limit} bytes")
        return None

    async def authorize(self, ctx: RequestContext) -> Response | None:
        try:
            self._gate.enforce(ctx.headers)
        except AuthError as e:
            self._logger.log_denied(ctx.method, ctx.path, e.reason)
            raise
        return None

    async def capture_body(self, ctx: RequestContext) -> Response | None:
        """Parse the body the way a body-parsing layer would; GET/HEAD bodies are ignored."""
        if not ctx.can_carry_body or ctx.stream is None:
            return None
        raw = await read_body(ctx.stream, self._config.limits.max_body_size)
        ctx.parsed_body, ctx.raw_body = self._transformer.parse(
            raw, ctx.headers.get("content-type")
        )
        return None

    async def forward(self, ctx: RequestContext) -> Response:
        encoded = self._transformer.encode(ctx)
        outbound = OutboundRequest(
            method=ctx.method,
            url=ctx.target_path,
            headers=self._headers.build_upstream_headers(ctx.headers.items(), encoded.headers),
            content=encoded.content,
        )
        start = time.perf_counter()
        response = await self._upstream.forward(outbound, ctx.is_disconnected)
        self._logger.log_forward(
            ctx.method,
            ctx.target_path,
            response.status_code,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )
        return response

    def render_error(self, ctx: RequestContext, error: ProxyError) -> Response:
        """Turn a stage failure into exactly one JSON response."""
        if isinstance(error, AuthError):
            return error_response(error, self._gate.error_body(error))
        if isinstance(error, UpstreamError):
            return self._classifier.handle(error)
        if isinstance(error, ClientDisconnected):
            self._logger.log_error(ctx.method, error.status_code, str(error))
            return Response(status_code=error.status_code)
        self._logger.log_error(ctx.method, error.status_code, f"{error.code}: {error}")
        return error_response(error)
