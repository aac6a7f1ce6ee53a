"""
Handshake engine.

Drives a Connection from DISCONNECTED to AUTHENTICATED:

    DISCONNECTED -> CONNECTING -> CONNECTED -> HANDSHAKE_IN_FLIGHT -> AUTHENTICATED
                                                                   \\-> FAILED

The first frame the node sends back is the acknowledgement. It must parse as
a handshake message, and when it carries a genesis hash that hash must equal
the one the Endpoint expects. Every failure is terminal for the connection.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence

from shared.envelope import HandshakeMessage
from shared.errors import (
    ConnectError,
    ConnectionLost,
    GenesisMismatch,
    HandshakeTimeout,
    MalformedEnvelope,
    MalformedHandshakeResponse,
    SendError,
)
from shared.log import get_logger, log_event
from shared.utils import hash_to_hex

from .state import Connection, ConnectionState
from .transport import WebSocketTransport

logger = get_logger(__name__)

TransportFactory = Callable[[str], Awaitable[WebSocketTransport]]


class HandshakeEngine:
    """Single-use state machine bound to one Connection."""

    def __init__(
        self,
        connection: Connection,
        *,
        timeout: float = 10.0,
        node_name: str = "my-node",
        chain_name: str = "my-chain",
        capabilities: Optional[Sequence[str]] = None,
    ) -> None:
        self.connection = connection
        self.timeout = timeout
        self.node_name = node_name
        self.chain_name = chain_name
        self.capabilities: List[str] = list(capabilities) if capabilities is not None else ["full"]
        self.peer_hello: Optional[HandshakeMessage] = None

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    async def open(self, transport_factory: TransportFactory) -> None:
        """DISCONNECTED -> CONNECTED, or FAILED with ConnectError"""
        connection = self.connection
        connection.transition(ConnectionState.CONNECTING)
        log_event(logger, "connecting", f"Connecting to node at {connection.endpoint.uri}",
                  endpoint=connection.endpoint.uri)
        try:
            connection.transport = await transport_factory(connection.endpoint.uri)
        except ConnectError as e:
            log_event(logger, "connect-failed", str(e), level="error", endpoint=connection.endpoint.uri)
            raise connection.fail(e)
        connection.transition(ConnectionState.CONNECTED)
        log_event(logger, "connected", endpoint=connection.endpoint.uri)

    def build_hello(self) -> HandshakeMessage:
        return HandshakeMessage.create(
            self.connection.endpoint.genesis_hash,
            name=self.node_name,
            chain=self.chain_name,
            capabilities=self.capabilities,
        )

    async def perform(self) -> HandshakeMessage:
        """
        CONNECTED -> HANDSHAKE_IN_FLIGHT -> AUTHENTICATED.

        Returns the peer's acknowledgement. Raises a HandshakeError subclass
        (or SendError) after moving the connection to FAILED.
        """
        connection = self.connection
        hello = self.build_hello()
        try:
            await connection.send(hello.to_json())
        except SendError as e:
            raise self._failed(e)
        connection.transition(ConnectionState.HANDSHAKE_IN_FLIGHT)
        log_event(logger, "handshake-sent", endpoint=connection.endpoint.uri, version=hello.version)

        try:
            raw = await connection.transport.recv(timeout=self.timeout)
        except asyncio.TimeoutError:
            raise self._failed(HandshakeTimeout(f"no handshake response within {self.timeout}s"))
        except ConnectionLost as e:
            raise self._failed(MalformedHandshakeResponse(f"peer closed before acknowledging: {e}"))

        try:
            ack = HandshakeMessage.from_json(raw)
        except MalformedEnvelope as e:
            raise self._failed(MalformedHandshakeResponse(str(e)))

        if ack.genesis_hash is not None and ack.genesis_hash != connection.endpoint.genesis_hash:
            raise self._failed(GenesisMismatch(connection.endpoint.genesis_hex, hash_to_hex(ack.genesis_hash)))

        self.peer_hello = ack
        connection.transition(ConnectionState.AUTHENTICATED)
        log_event(logger, "handshake-complete", "Handshake completed",
                  endpoint=connection.endpoint.uri, peer_version=ack.version,
                  peer_chain=ack.chain or None)
        return ack

    async def run(self, transport_factory: TransportFactory) -> HandshakeMessage:
        await self.open(transport_factory)
        return await self.perform()

    def _failed(self, error: Exception) -> Exception:
        log_event(logger, "handshake-failed", f"Handshake failed: {error}", level="error",
                  endpoint=self.connection.endpoint.uri)
        return self.connection.fail(error)
