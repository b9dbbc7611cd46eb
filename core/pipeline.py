"""Ordered request pipeline: each stage continues or ends the request."""

from collections.abc import Awaitable, Callable, Sequence

from fastapi import Response

from core.exceptions import ProxyError
from core.request_types import RequestContext

# A stage returns None to continue, or the terminal response.
Stage = Callable[[RequestContext], Awaitable[Response | None]]
ErrorHandler = Callable[[RequestContext, ProxyError], Response]


class Pipeline:
    """Run stages strictly in order until one produces a response."""

    def __init__(self, stages: Sequence[tuple[str, Stage]], on_error: ErrorHandler) -> None:
        if not stages:
            raise ValueError("pipeline needs at least one stage")
        self._stages = tuple(stages)
        self._on_error = on_error

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._stages)

    async def run(self, ctx: RequestContext) -> Response:
        for name, stage in self._stages:
            ctx.state["stage"] = name
            try:
                outcome = await stage(ctx)
            except ProxyError as e:
                return self._on_error(ctx, e)
            if outcome is not None:
                return outcome
        raise RuntimeError(f"pipeline finished without a response (last stage: {name})")
