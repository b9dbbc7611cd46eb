"""Classification of upstream transport failures."""

import asyncio
from typing import Any

import httpx
from fastapi import Response
from fastapi.responses import JSONResponse

from core.exceptions import (
    ProxyError,
    UpstreamConnectionError,
    UpstreamError,
    UpstreamProtocolError,
    UpstreamTimeoutError,
)
from core.protocols import RequestLogger


def error_response(error: ProxyError, body: dict[str, Any] | None = None) -> JSONResponse:
    """Render a client-facing error as a single JSON response."""
    if body is None:
        body = {"error": error.code, "detail": str(error)}
    return JSONResponse(content=body, status_code=error.status_code)


def _describe(exc: BaseException) -> str:
    message = str(exc)
    return message or exc.__class__.__name__


class FailureClassifier:
    """Map transport errors to ``UpstreamError`` and decide what the caller sees."""

    def __init__(self, logger: RequestLogger, target: str) -> None:
        self._logger = logger
        self._target = target

    def classify(self, exc: BaseException) -> UpstreamError:
        """Wrap a transport-level exception in the matching ``UpstreamError``."""
        if isinstance(exc, UpstreamError):
            return exc
        if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
            return UpstreamTimeoutError(
                f"Upstream timeout: {_describe(exc)}", target=self._target
            )
        if isinstance(exc, (httpx.RemoteProtocolError, httpx.DecodingError)):
            return UpstreamProtocolError(_describe(exc), target=self._target)
        return UpstreamConnectionError(_describe(exc), target=self._target)

    def handle(self, error: UpstreamError, *, headers_sent: bool = False) -> Response | None:
        """Log ``error`` and build the caller's response.

        Returns None once headers went out: a second response would corrupt
        the stream, so the failure is only logged.
        """
        if headers_sent:
            self._logger.log_error(
                "stream", error.status_code, f"{error.kind} after headers sent: {error}"
            )
            return None

        self._logger.log_error("upstream", error.status_code, f"{error.kind}: {error}")
        return error_response(error)
