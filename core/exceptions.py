"""Custom exception hierarchy for the bridge."""


class ProxyError(Exception):
    """Base exception for all bridge errors.

    Client-facing subclasses set ``status_code`` and ``code``; the code becomes
    the ``error`` discriminator of the JSON error body.
    """

    status_code: int = 500
    code: str = "BRIDGE_ERROR"


class ConfigurationError(ProxyError):
    """Raised when configuration is missing or invalid."""


class AuthError(ProxyError):
    """Raised when the shared-secret header does not authorize the request.

    Attributes:
        reason: ``MISSING_HEADER`` or ``INVALID_HEADER_VALUE``
    """

    status_code = 401
    code = "INVALID_BRIDGE_KEY"
    reason = "UNAUTHORIZED"


class MissingCredential(AuthError):
    """The credential header is absent."""

    reason = "MISSING_HEADER"


class InvalidCredential(AuthError):
    """The credential header is present but does not match."""

    reason = "INVALID_HEADER_VALUE"


class RequestTooLarge(ProxyError):
    """Request body exceeds size limit."""

    status_code = 413
    code = "PAYLOAD_TOO_LARGE"


class InvalidJSON(ProxyError):
    """Request body is not valid JSON."""

    status_code = 400
    code = "INVALID_JSON"


class UpstreamError(ProxyError):
    """Raised when the upstream cannot produce a response.

    Attributes:
        message: Error message
        target: Upstream base URL
    """

    status_code = 502
    code = "RDP_UNREACHABLE"
    kind = "UPSTREAM_UNREACHABLE"

    def __init__(self, message: str, target: str | None = None) -> None:
        super().__init__(message)
        self.target = target


class UpstreamTimeoutError(UpstreamError):
    """Raised when the upstream does not answer within the timeout."""


class UpstreamConnectionError(UpstreamError):
    """Raised when unable to connect to the upstream (refused, DNS, reset)."""


class UpstreamProtocolError(UpstreamError):
    """Raised when the upstream sends a malformed response."""

    kind = "UPSTREAM_PROTOCOL_ERROR"


class StreamingFailure(ProxyError):
    """The upstream failed after response headers were sent to the caller.

    Never rendered as a response; the connection is aborted instead.
    """


class ClientDisconnected(ProxyError):
    """The caller went away before the upstream answered."""

    status_code = 499
    code = "CLIENT_DISCONNECTED"
