from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from shared.errors import RequestCancelled
from shared.log import get_logger, log_event

from .config import ClientSettings, Endpoint
from .correlator import PendingRequest, RpcCorrelator
from .handshake import HandshakeEngine, TransportFactory
from .state import Connection
from .transport import WebSocketTransport

logger = get_logger(__name__)

# label -> RPC method, in dispatch order
IDENTITY_QUERIES: Tuple[Tuple[str, str], ...] = (
    ("name", "system_name"),
    ("chain", "system_chain"),
    ("version", "system_version"),
)


@dataclass(frozen=True)
class NodeIdentity:
    name: str
    chain: str
    version: str

    def as_dict(self) -> Dict[str, str]:
        return {"name": self.name, "chain": self.chain, "version": self.version}


class QueryOrchestrator:
    """
    One identification run: connect, handshake, then ask the node for its
    name, chain and version concurrently over the same connection.

    The connection is always closed before ``run`` returns or raises.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        settings: Optional[ClientSettings] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.endpoint = endpoint
        self.settings = settings or ClientSettings()
        self.transport_factory = transport_factory or self._open_websocket
        self.connection = Connection(endpoint)
        self.handshake = HandshakeEngine(
            self.connection,
            timeout=self.settings.handshake_timeout,
            node_name=self.settings.node_name,
            chain_name=self.settings.chain_name,
            capabilities=self.settings.capabilities,
        )
        self.correlator = RpcCorrelator(self.connection, request_timeout=self.settings.request_timeout)

    async def _open_websocket(self, uri: str) -> WebSocketTransport:
        return await WebSocketTransport.connect(
            uri,
            open_timeout=self.settings.open_timeout,
            ping_interval=self.settings.ping_interval,
            ping_timeout=self.settings.ping_timeout,
        )

    async def run(self) -> NodeIdentity:
        try:
            await self.handshake.run(self.transport_factory)
            self.correlator.start()
            results = await self.query_identity()
            logger.info("Node information queried!")
            return NodeIdentity(**results)
        except asyncio.CancelledError:
            self.correlator.cancel_all("run cancelled")
            raise
        finally:
            await self.correlator.close()
            await self.connection.close()

    async def query_identity(self) -> Dict[str, str]:
        """Dispatch every identity query, then collect the replies by id"""
        labels: Dict[int, str] = {}
        requests: Dict[int, PendingRequest] = {}
        for label, method in IDENTITY_QUERIES:
            pending = await self.correlator.dispatch(method)
            labels[pending.id] = label
            requests[pending.id] = pending

        replies = await asyncio.gather(
            *(self.correlator.wait(pending) for pending in requests.values()),
            return_exceptions=True,
        )

        results: Dict[str, str] = {}
        first_error: Optional[BaseException] = None
        for request_id, reply in zip(requests, replies):
            label = labels[request_id]
            if isinstance(reply, BaseException):
                logger.error("Query %s (id %d) failed: %s", label, request_id, reply)
                first_error = first_error or reply
                continue
            value = _as_text(reply)
            results[label] = value
            log_event(logger, "query-result", f"{label}: {value}", request_id=request_id,
                      label=label, value=value)

        if first_error is not None:
            if isinstance(first_error, asyncio.CancelledError):
                raise RequestCancelled("identity query cancelled") from first_error
            raise first_error
        return results


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)
