"""Tests for stage ordering (core/pipeline.py)."""

import pytest
from fastapi import Response
from starlette.datastructures import Headers

from core.exceptions import InvalidCredential, ProxyError
from core.pipeline import Pipeline
from core.request_types import RequestContext


def make_ctx() -> RequestContext:
    return RequestContext(method="GET", path="/x", query="", headers=Headers())


def recorder(calls: list[str], name: str, result=None, error: ProxyError | None = None):
    async def stage(ctx):
        calls.append(name)
        if error is not None:
            raise error
        return result

    return name, stage


def on_error(ctx, error):
    return Response(status_code=error.status_code, content=error.code)


@pytest.mark.asyncio
async def test_stages_run_in_order_until_a_response():
    calls = []
    pipeline = Pipeline(
        [
            recorder(calls, "first"),
            recorder(calls, "second", Response(status_code=204)),
            recorder(calls, "third", Response(status_code=200)),
        ],
        on_error,
    )

    response = await pipeline.run(make_ctx())

    assert response.status_code == 204
    assert calls == ["first", "second"]
    assert pipeline.stage_names == ("first", "second", "third")


@pytest.mark.asyncio
async def test_proxy_error_stops_the_pipeline():
    calls = []
    ctx = make_ctx()
    pipeline = Pipeline(
        [
            recorder(calls, "gate", error=InvalidCredential("nope")),
            recorder(calls, "forward", Response(status_code=200)),
        ],
        on_error,
    )

    response = await pipeline.run(ctx)

    assert response.status_code == 401
    assert response.body == b"INVALID_BRIDGE_KEY"
    assert calls == ["gate"]
    assert ctx.state["stage"] == "gate"


@pytest.mark.asyncio
async def test_pipeline_without_terminal_stage_fails_loudly():
    pipeline = Pipeline([recorder([], "noop")], on_error)

    with pytest.raises(RuntimeError):
        await pipeline.run(make_ctx())


def test_empty_pipeline_is_rejected():
    with pytest.raises(ValueError):
        Pipeline([], on_error)


def test_bridge_stage_order(client):
    service = client.app.state.bridge_service

    assert service.pipeline.stage_names == (
        "health",
        "size_limit",
        "authorize",
        "capture_body",
        "forward",
    )
