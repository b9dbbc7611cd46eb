"""Shared request data types."""

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from starlette.datastructures import Headers

BODYLESS_METHODS = frozenset({"GET", "HEAD"})


@dataclass
class RequestContext:
    """Inbound request as seen by the pipeline stages.

    ``parsed_body`` holds the structured body once the body capture stage ran;
    ``raw_body`` is only kept when the body was not a structured format.
    """

    method: str
    path: str
    query: str
    headers: Headers
    stream: AsyncIterator[bytes] | None = None
    is_disconnected: Callable[[], Awaitable[bool]] | None = None
    parsed_body: Any = None
    raw_body: bytes | None = None
    state: dict[str, Any] = field(default_factory=dict)

    @property
    def can_carry_body(self) -> bool:
        return self.method.upper() not in BODYLESS_METHODS

    @property
    def target_path(self) -> str:
        """Path plus raw query string, as sent upstream."""
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path


@dataclass(frozen=True)
class EncodedBody:
    """Outbound payload and the headers that describe it."""

    content: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OutboundRequest:
    """Prepared data for the upstream request."""

    method: str
    url: str
    headers: list[tuple[str, str]]
    content: bytes | None = None


@dataclass(frozen=True)
class GateDecision:
    """Outcome of the authorization gate."""

    allowed: bool
    reason: str | None = None
