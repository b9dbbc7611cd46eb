"""FastAPI application factory."""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.handlers import handle_bridge
from auth import AuthGate
from core.config import Config
from core.failures import FailureClassifier
from core.headers import HeaderBuilder
from core.protocols import RequestLogger
from core.transform import BodyTransformer
from services.bridge_service import BridgeService
from services.upstream import UpstreamClient

FORWARDED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    config: Config,
    logger: RequestLogger,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``transport`` replaces the network transport of the upstream client.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        limits = httpx.Limits(
            max_connections=config.limits.max_connections,
            max_keepalive_connections=config.limits.max_keepalive_connections,
        )
        upstream_client = httpx.AsyncClient(
            base_url=config.upstream.base_url,
            timeout=config.limits.timeout,
            limits=limits,
            transport=transport,
            follow_redirects=False,
        )
        header_builder = HeaderBuilder(config.auth.header)
        classifier = FailureClassifier(logger, config.upstream.base_url)
        app.state.upstream_client = UpstreamClient(
            upstream_client,
            classifier,
            header_builder,
            timeout=config.limits.timeout,
        )
        app.state.bridge_service = BridgeService(
            config=config,
            logger=logger,
            upstream=app.state.upstream_client,
            gate=AuthGate(config.auth),
            transformer=BodyTransformer(),
            header_builder=header_builder,
            classifier=classifier,
        )
        try:
            yield
        finally:
            await upstream_client.aclose()

    app = FastAPI(
        title="HTTPS Bridge",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors.allowed_origins) or ["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", config.auth.header],
        expose_headers=["Content-Type", "Content-Length"],
    )

    @app.api_route("/{path:path}", methods=FORWARDED_METHODS)
    async def bridge(request: Request):
        return await handle_bridge(request, config)

    return app
