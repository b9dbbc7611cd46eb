"""Header construction for upstream requests and caller responses."""

from collections.abc import Iterable

# Connection-scoped headers never cross the hop (RFC 9110 section 7.6.1).
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


class HeaderBuilder:
    """Build outbound request headers and pass-through response headers."""

    def __init__(self, credential_header: str | None = None) -> None:
        self._credential_header = credential_header.lower() if credential_header else None

    def build_upstream_headers(
        self,
        headers: Iterable[tuple[str, str]],
        overrides: dict[str, str] | None = None,
    ) -> list[tuple[str, str]]:
        """Copy inbound headers for the upstream call.

        Drops hop-by-hop headers, ``host`` (httpx sets it from the upstream
        URL), ``content-length`` (recomputed for the outbound body) and the
        bridge credential. ``overrides`` replace any inbound header of the
        same name.
        """
        headers = list(headers)
        overrides = overrides or {}
        replaced = {key.lower() for key in overrides}
        dropped = self._connection_tokens(headers) | HOP_BY_HOP_HEADERS | replaced
        dropped |= {"host", "content-length"}
        if self._credential_header:
            dropped.add(self._credential_header)

        upstream = [(key, value) for key, value in headers if key.lower() not in dropped]
        upstream.extend(overrides.items())
        return upstream

    def build_response_headers(
        self,
        headers: Iterable[tuple[bytes, bytes]],
    ) -> list[tuple[bytes, bytes]]:
        """Pass through upstream response headers minus hop-by-hop ones."""
        decoded = [(key.decode("latin-1"), value.decode("latin-1")) for key, value in headers]
        dropped = self._connection_tokens(decoded) | HOP_BY_HOP_HEADERS
        return [
            (key.lower().encode("latin-1"), value.encode("latin-1"))
            for key, value in decoded
            if key.lower() not in dropped
        ]

    @staticmethod
    def _connection_tokens(headers: Iterable[tuple[str, str]]) -> set[str]:
        """Header names listed in ``Connection`` are hop-by-hop as well."""
        tokens: set[str] = set()
        for key, value in headers:
            if key.lower() == "connection":
                tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
        return tokens
