from __future__ import annotations

from typing import Any, Optional


class NodeClientError(Exception):
    """Base class for every failure surfaced by the node client."""
    kind = "error"

    def __str__(self) -> str:
        detail = super().__str__()
        return f"{self.kind}: {detail}" if detail else self.kind


# ---- transport ----

class ConnectError(NodeClientError):
    """The endpoint could not be reached."""
    kind = "connect"


class SendError(NodeClientError):
    """The channel is closed or the peer disconnected while sending."""
    kind = "send"


class ConnectionLost(NodeClientError):
    """The peer closed the channel."""
    kind = "connection-lost"


# ---- handshake ----

class HandshakeError(NodeClientError):
    kind = "handshake"


class HandshakeTimeout(HandshakeError):
    kind = "handshake-timeout"


class MalformedHandshakeResponse(HandshakeError):
    kind = "malformed-handshake-response"


class GenesisMismatch(HandshakeError):
    """The peer reported a genesis hash other than the expected one."""
    kind = "genesis-mismatch"

    def __init__(self, expected: str, received: str) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"expected genesis {expected}, peer reported {received}")


class NotAuthenticated(NodeClientError):
    """RPC traffic was attempted before the handshake completed."""
    kind = "not-authenticated"


class InvalidStateTransition(NodeClientError):
    kind = "invalid-state"


# ---- queries ----

class QueryError(NodeClientError):
    kind = "query"


class RequestTimeout(QueryError):
    kind = "request-timeout"

    def __init__(self, request_id: int, method: str, timeout: float) -> None:
        self.request_id = request_id
        self.method = method
        self.timeout = timeout
        super().__init__(f"request {request_id} ({method}) not answered within {timeout}s")


class RequestCancelled(QueryError):
    kind = "cancelled"


class RpcError(QueryError):
    """The node answered with a JSON-RPC error object."""
    kind = "rpc-error"

    def __init__(self, code: Optional[int], message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"[{code}] {message}")


class DuplicateResponse(NodeClientError):
    """A second response arrived for an id that was already delivered."""
    kind = "duplicate-response"


class MalformedEnvelope(NodeClientError):
    kind = "malformed-envelope"


class ConfigError(NodeClientError):
    kind = "config"
