from __future__ import annotations

import time
from enum import Enum
from typing import Dict, FrozenSet, Optional

from shared.errors import InvalidStateTransition, NodeClientError, NotAuthenticated
from shared.log import get_logger, log_event

from .config import Endpoint
from .transport import WebSocketTransport

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of one connection to a node."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    HANDSHAKE_IN_FLIGHT = "handshake-in-flight"
    AUTHENTICATED = "authenticated"                  # terminal success
    FAILED = "failed"                                # terminal failure

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.AUTHENTICATED, ConnectionState.FAILED)


# Legal forward transitions; FAILED is reachable from every non-terminal state
TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING, ConnectionState.FAILED}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.CONNECTED, ConnectionState.FAILED}),
    ConnectionState.CONNECTED: frozenset({ConnectionState.HANDSHAKE_IN_FLIGHT, ConnectionState.FAILED}),
    ConnectionState.HANDSHAKE_IN_FLIGHT: frozenset({ConnectionState.AUTHENTICATED, ConnectionState.FAILED}),
    ConnectionState.AUTHENTICATED: frozenset(),
    ConnectionState.FAILED: frozenset(),
}


class Connection:
    """
    An Endpoint plus the transport opened to it, with its handshake state.

    Owned by whoever drives the session; several can coexist in one process.
    """

    def __init__(self, endpoint: Endpoint, transport: Optional[WebSocketTransport] = None) -> None:
        self.endpoint = endpoint
        self.transport = transport
        self.state = ConnectionState.DISCONNECTED
        self.failure: Optional[NodeClientError] = None
        self.state_changed_at: float = time.monotonic()

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    def transition(self, new_state: ConnectionState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidStateTransition(f"{self.state.value} -> {new_state.value}")
        logger.debug("Connection %s: %s -> %s", self.endpoint.uri, self.state.value, new_state.value)
        self.state = new_state
        self.state_changed_at = time.monotonic()

    def fail(self, error: NodeClientError) -> NodeClientError:
        """Move to FAILED, remember why, and hand the error back for raising"""
        if self.state is not ConnectionState.FAILED:
            self.transition(ConnectionState.FAILED)
        self.failure = error
        return error

    def require_authenticated(self) -> None:
        if self.state is not ConnectionState.AUTHENTICATED:
            raise NotAuthenticated(f"connection to {self.endpoint.uri} is {self.state.value}")

    async def send(self, message: str) -> None:
        if self.transport is None:
            raise InvalidStateTransition("connection has no transport")
        await self.transport.send(message)

    async def close(self) -> None:
        """Release the transport; idempotent"""
        if self.transport is None or self.transport.closed:
            return
        await self.transport.close()
        log_event(logger, "closed", endpoint=self.endpoint.uri, state=self.state.value)
