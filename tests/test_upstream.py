"""Tests for the forwarding engine (services/upstream.py)."""

import asyncio
import gzip

import httpx
import pytest

from conftest import TARGET, RecordingLogger, upstream_response
from core.exceptions import (
    ClientDisconnected,
    StreamingFailure,
    UpstreamConnectionError,
    UpstreamTimeoutError,
)
from core.failures import FailureClassifier
from core.headers import HeaderBuilder
from core.request_types import OutboundRequest
from services.upstream import UpstreamClient


class BrokenStream(httpx.AsyncByteStream):
    """Upstream body that dies after the first chunk."""

    async def __aiter__(self):
        yield b"partial"
        raise httpx.ReadError("connection reset by peer")


def make_upstream(handler, logger=None, timeout=5.0):
    client = httpx.AsyncClient(base_url=TARGET, transport=httpx.MockTransport(handler))
    classifier = FailureClassifier(logger or RecordingLogger(), TARGET)
    return client, UpstreamClient(
        client,
        classifier,
        HeaderBuilder("x-bridge-key"),
        timeout=timeout,
        disconnect_poll_interval=0.01,
    )


async def collect(response) -> bytes:
    chunks = []
    async for chunk in response.body_iterator:
        chunks.append(chunk)
    return b"".join(chunks)


@pytest.mark.asyncio
async def test_forward_relays_raw_encoded_bytes():
    compressed = gzip.compress(b'{"hello": "world"}')

    def handler(request):
        return upstream_response(
            201, compressed, {"content-encoding": "gzip", "content-type": "application/json"}
        )

    client, upstream = make_upstream(handler)
    async with client:
        response = await upstream.forward(OutboundRequest("GET", "/greeting", headers=[]))
        body = await collect(response)

    assert response.status_code == 201
    assert body == compressed
    assert (b"content-encoding", b"gzip") in response.raw_headers


@pytest.mark.asyncio
async def test_forward_drops_hop_by_hop_response_headers():
    def handler(request):
        return upstream_response(
            200, b"ok", [("connection", "close"), ("keep-alive", "timeout=5"), ("x-kept", "1")]
        )

    client, upstream = make_upstream(handler)
    async with client:
        response = await upstream.forward(OutboundRequest("GET", "/", headers=[]))
        await collect(response)

    names = [key for key, _ in response.raw_headers]
    assert b"connection" not in names
    assert b"keep-alive" not in names
    assert b"x-kept" in names


@pytest.mark.asyncio
async def test_forward_does_not_add_client_default_headers():
    seen = {}

    def handler(request):
        seen.update(request.headers)
        return upstream_response(204)

    client, upstream = make_upstream(handler)
    async with client:
        response = await upstream.forward(
            OutboundRequest("GET", "/", headers=[("accept", "text/html")])
        )
        await collect(response)

    assert seen["accept"] == "text/html"
    assert "accept-encoding" not in seen
    assert "user-agent" not in seen


@pytest.mark.asyncio
async def test_forward_sends_the_given_body():
    seen = {}

    async def handler(request):
        seen["body"] = await request.aread()
        seen["length"] = request.headers.get("content-length")
        return upstream_response(200)

    client, upstream = make_upstream(handler)
    async with client:
        payload = '{"city":"Zürich"}'.encode("utf-8")
        response = await upstream.forward(
            OutboundRequest(
                "POST",
                "/cities",
                headers=[("content-type", "application/json"), ("content-length", str(len(payload)))],
                content=payload,
            )
        )
        await collect(response)

    assert seen["body"] == payload
    assert seen["length"] == str(len(payload))


@pytest.mark.asyncio
async def test_connect_error_is_classified():
    def handler(request):
        raise httpx.ConnectError("Name or service not known")

    logger = RecordingLogger()
    client, upstream = make_upstream(handler, logger)
    async with client:
        with pytest.raises(UpstreamConnectionError) as exc_info:
            await upstream.forward(OutboundRequest("GET", "/", headers=[]))

    assert str(exc_info.value) == "Name or service not known"
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_slow_upstream_times_out_and_is_cancelled():
    cancelled = asyncio.Event()

    async def handler(request):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return upstream_response(200)

    client, upstream = make_upstream(handler, timeout=0.05)
    async with client:
        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await upstream.forward(OutboundRequest("GET", "/slow", headers=[]))

    assert cancelled.is_set()
    assert exc_info.value.code == "RDP_UNREACHABLE"
    assert "timeout" in str(exc_info.value).lower()


@pytest.mark.asyncio
async def test_caller_disconnect_aborts_the_outbound_call():
    cancelled = asyncio.Event()

    async def handler(request):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return upstream_response(200)

    polls = 0

    async def is_disconnected():
        nonlocal polls
        polls += 1
        return polls > 2

    client, upstream = make_upstream(handler)
    async with client:
        with pytest.raises(ClientDisconnected):
            await upstream.forward(OutboundRequest("GET", "/slow", headers=[]), is_disconnected)

    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_target_keeps_dot_segments_and_base_path():
    seen = []

    def handler(request):
        seen.append(request)
        return upstream_response(200)

    client = httpx.AsyncClient(base_url=f"{TARGET}/api", transport=httpx.MockTransport(handler))
    upstream = UpstreamClient(
        client, FailureClassifier(RecordingLogger(), TARGET), HeaderBuilder("x-bridge-key"), 5.0
    )
    async with client:
        response = await upstream.forward(OutboundRequest("GET", "/a/../admin?x=1", headers=[]))
        await collect(response)

    assert seen[0].extensions["target"] == b"/api/a/../admin?x=1"
    assert seen[0].url.host == "upstream.test"


@pytest.mark.asyncio
async def test_stuck_disconnect_check_does_not_hold_up_the_response():
    async def is_disconnected():
        # Mirrors a receive() running under its own cancel scope: cancellation is absorbed
        try:
            await asyncio.sleep(0.05)
        except asyncio.CancelledError:
            pass
        return False

    client, upstream = make_upstream(lambda request: upstream_response(200, b"done"))
    async with client:
        response = await asyncio.wait_for(
            upstream.forward(OutboundRequest("POST", "/echo", headers=[]), is_disconnected),
            timeout=2,
        )
        body = await collect(response)

    assert response.status_code == 200
    assert body == b"done"


@pytest.mark.asyncio
async def test_failing_disconnect_check_keeps_waiting_for_upstream():
    async def is_disconnected():
        raise RuntimeError("receive channel closed")

    async def handler(request):
        await asyncio.sleep(0.05)
        return upstream_response(200, b"late")

    client, upstream = make_upstream(handler)
    async with client:
        response = await upstream.forward(OutboundRequest("GET", "/", headers=[]), is_disconnected)
        body = await collect(response)

    assert body == b"late"


@pytest.mark.asyncio
async def test_failure_after_headers_sent_is_only_logged():
    def handler(request):
        return httpx.Response(200, headers={"content-type": "text/plain"}, stream=BrokenStream())

    logger = RecordingLogger()
    client, upstream = make_upstream(handler, logger)
    async with client:
        response = await upstream.forward(OutboundRequest("GET", "/stream", headers=[]))
        received = []
        with pytest.raises(StreamingFailure):
            async for chunk in response.body_iterator:
                received.append(chunk)

    assert response.status_code == 200
    assert received == [b"partial"]
    assert len(logger.errors) == 1
    route, status, message = logger.errors[0]
    assert route == "stream"
    assert "after headers sent" in message
