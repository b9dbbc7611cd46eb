"""HTTP forwarding to the fixed upstream."""

import asyncio
import contextlib
import string
from collections.abc import AsyncIterator, Awaitable, Callable
from urllib.parse import quote_from_bytes

import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from core.exceptions import ClientDisconnected, StreamingFailure
from core.failures import FailureClassifier
from core.headers import HeaderBuilder
from core.request_types import OutboundRequest

# httpx adds these to every request; the caller's own values (or none) must win.
CLIENT_DEFAULT_HEADERS = ("accept", "accept-encoding", "user-agent")


class UpstreamClient:
    """Send one request to the upstream and stream its response back."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        classifier: FailureClassifier,
        header_builder: HeaderBuilder,
        timeout: float,
        disconnect_poll_interval: float = 0.5,
    ) -> None:
        self._client = client
        self._classifier = classifier
        self._headers = header_builder
        self._timeout = timeout
        self._poll_interval = disconnect_poll_interval

    async def forward(
        self,
        outbound: OutboundRequest,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> StreamingResponse:
        """Forward ``outbound`` and relay the upstream response.

        Raises:
            UpstreamError: the upstream could not be reached in time.
            ClientDisconnected: the caller left before the upstream answered.
        """
        request = self._build_request(outbound)
        try:
            response = await self._send(request, is_disconnected)
        except httpx.RequestError as e:
            raise self._classifier.classify(e) from e
        return self._relay(response)

    def _build_request(self, outbound: OutboundRequest) -> httpx.Request:
        target = self._target(outbound.url)
        request = self._client.build_request(
            outbound.method,
            self._client.base_url.copy_with(raw_path=target),
            headers=outbound.headers,
            content=outbound.content,
            # httpx normalises dot segments in URLs; the transport sends this target as is
            extensions={"target": target},
        )
        sent = {key.lower() for key, _ in outbound.headers}
        for name in CLIENT_DEFAULT_HEADERS:
            if name not in sent:
                request.headers.pop(name, None)
        return request

    def _target(self, path: str) -> bytes:
        """Upstream base path followed by the caller's path and query, byte for byte."""
        base = self._client.base_url.raw_path.rstrip(b"/")
        # Bytes outside printable ASCII are escaped; everything else is left alone
        escaped = quote_from_bytes(path.encode("latin-1"), safe=string.punctuation)
        return base + escaped.encode("ascii")

    async def _send(
        self,
        request: httpx.Request,
        is_disconnected: Callable[[], Awaitable[bool]] | None,
    ) -> httpx.Response:
        """Wait for the response head, the timeout, or the caller leaving."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        send = asyncio.ensure_future(self._client.send(request, stream=True))
        stop = asyncio.Event()
        watch = None
        tasks = {send}
        if is_disconnected is not None:
            watch = asyncio.ensure_future(self._wait_for_disconnect(is_disconnected, stop))
            tasks.add(watch)

        try:
            done, _ = await asyncio.wait(
                tasks, timeout=self._timeout, return_when=asyncio.FIRST_COMPLETED
            )
            if watch in done and send not in done and not self._caller_left(watch):
                # The disconnect check itself failed; keep waiting on the upstream alone
                done, _ = await asyncio.wait({send}, timeout=max(deadline - loop.time(), 0))
        except asyncio.CancelledError:
            await self._stop_watch(watch, stop)
            await self._abandon(send)
            raise

        await self._stop_watch(watch, stop)
        if send in done:
            return send.result()

        await self._abandon(send)
        if watch is not None and self._caller_left(watch):
            raise ClientDisconnected("Caller disconnected before the upstream answered")
        raise self._classifier.classify(
            asyncio.TimeoutError(f"no response within {self._timeout:g}s")
        )

    async def _wait_for_disconnect(
        self,
        is_disconnected: Callable[[], Awaitable[bool]],
        stop: asyncio.Event,
    ) -> bool:
        while not stop.is_set():
            if await is_disconnected():
                return True
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), self._poll_interval)
        return False

    @staticmethod
    def _caller_left(watch: asyncio.Future) -> bool:
        return (
            watch.done()
            and not watch.cancelled()
            and watch.exception() is None
            and watch.result() is True
        )

    async def _stop_watch(self, watch: asyncio.Future | None, stop: asyncio.Event) -> None:
        """Ask the watcher to finish; a check still in flight gets one poll interval."""
        stop.set()
        if watch is None or watch.done():
            return
        await asyncio.wait({watch}, timeout=self._poll_interval)
        if not watch.done():
            watch.cancel()

    async def _abandon(self, send: asyncio.Future) -> None:
        if send.done():
            return
        send.cancel()
        await asyncio.wait({send}, timeout=self._poll_interval)

    def _relay(self, response: httpx.Response) -> StreamingResponse:
        """Pass status, headers and undecoded body bytes through unchanged."""
        relayed = StreamingResponse(
            self._iter_body(response),
            status_code=response.status_code,
            background=BackgroundTask(self._cleanup_streaming, response),
        )
        relayed.raw_headers = self._headers.build_response_headers(response.headers.raw)
        return relayed

    async def _iter_body(self, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_raw():
                yield chunk
        except httpx.RequestError as e:
            error = self._classifier.classify(e)
            self._classifier.handle(error, headers_sent=True)
            raise StreamingFailure(str(error)) from e
        finally:
            await response.aclose()

    async def _cleanup_streaming(self, response: httpx.Response) -> None:
        """Clean up streaming resources."""
        await response.aclose()
