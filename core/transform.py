"""Request body capture and re-encoding for the upstream hop."""

import json
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import parse_qsl

from core.exceptions import InvalidJSON, RequestTooLarge
from core.request_types import EncodedBody, RequestContext

FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"
JSON_MEDIA_TYPE = "application/json"


def media_type(content_type: str | None) -> str:
    """Return the bare media type of a Content-Type value, lowercased."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def is_json(content_type: str | None) -> bool:
    mt = media_type(content_type)
    return mt == JSON_MEDIA_TYPE or mt.endswith("+json")


async def read_body(stream: AsyncIterator[bytes], limit: int) -> bytes:
    """Drain ``stream``, failing as soon as more than ``limit`` bytes arrive."""
    chunks = []
    size = 0
    async for chunk in stream:
        size += len(chunk)
        if size > limit:
            raise RequestTooLarge(f"Request body exceeds {limit} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


class BodyTransformer:
    """Parse inbound bodies and rebuild the payload sent upstream.

    JSON and form bodies are parsed into a structured value; once parsed, the
    outbound payload is always derived from that value, never from the
    original bytes. Bodies in any other format are kept as raw bytes and
    forwarded unchanged.
    """

    def parse(self, raw: bytes, content_type: str | None) -> tuple[Any, bytes | None]:
        """Return ``(parsed_body, raw_body)``; exactly one side is meaningful.

        Raises:
            InvalidJSON: a JSON content type with a malformed body.
        """
        if is_json(content_type):
            if not raw.strip():
                return {}, None
            try:
                parsed = json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise InvalidJSON(f"Invalid JSON: {e}") from e
            if isinstance(parsed, (dict, list)):
                return parsed, None
            # Scalars have no structured form to rebuild from
            return None, raw

        if media_type(content_type) == FORM_MEDIA_TYPE:
            return self._parse_form(raw), None

        return None, raw or None

    def encode(self, ctx: RequestContext) -> EncodedBody:
        """Build the outbound payload for ``ctx``.

        GET and HEAD never carry a body. An empty structured body produces no
        payload and no Content-Length override.
        """
        if not ctx.can_carry_body:
            return EncodedBody()

        if ctx.parsed_body:
            payload = json.dumps(
                ctx.parsed_body,
                ensure_ascii=False,
                separators=(",", ":"),
            ).encode("utf-8")
            return EncodedBody(
                content=payload,
                headers={
                    "Content-Type": JSON_MEDIA_TYPE,
                    "Content-Length": str(len(payload)),
                },
            )

        if ctx.raw_body:
            return EncodedBody(
                content=ctx.raw_body,
                headers={"Content-Length": str(len(ctx.raw_body))},
            )

        return EncodedBody()

    @staticmethod
    def _parse_form(raw: bytes) -> dict[str, Any]:
        """Decode a urlencoded body; repeated keys collect into a list."""
        fields: dict[str, Any] = {}
        for key, value in parse_qsl(raw.decode("utf-8", errors="replace"), keep_blank_values=True):
            if key not in fields:
                fields[key] = value
            elif isinstance(fields[key], list):
                fields[key].append(value)
            else:
                fields[key] = [fields[key], value]
        return fields
