import asyncio
import json
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from shared.errors import ConnectionLost, SendError


GENESIS_HEX = "5972ecbfbc42507482dbcb0a2892bcd70161fd9acdfdf7e6455ab39bac3dfb83"
OTHER_GENESIS_HEX = "91b171bb158e2d3848fa23a9f1c25182fb8e20313b2c1eb49219da7a70ce90c3"

IDENTITY_ANSWERS = {
    "system_name": "Substrate Node",
    "system_chain": "Development",
    "system_version": "0.0.0-d70f8f9",
}


def handshake_ack(genesis_hex: Optional[str] = GENESIS_HEX, **extra) -> str:
    body = {"type": "handshake", "version": 1, "name": "stub-node", "chain": "dev", "capabilities": ["full"]}
    if genesis_hex is not None:
        body["genesis_hash"] = "0x" + genesis_hex
    body.update(extra)
    return json.dumps(body)


def rpc_result(request_id: int, result) -> str:
    return json.dumps({"id": request_id, "jsonrpc": "2.0", "result": result})


def rpc_error(request_id: int, code: int, message: str) -> str:
    return json.dumps({"id": request_id, "jsonrpc": "2.0", "error": {"code": code, "message": message}})


class FakeTransport:
    """In-memory stand-in for WebSocketTransport; tests push inbound frames with ``feed``."""

    _EOF = object()

    def __init__(self, uri: str = "ws://stub.invalid:9944") -> None:
        self.uri = uri
        self.sent: List[str] = []
        self.closed = False
        self.close_calls = 0
        self.fail_sends = False
        self.on_send: Optional[Callable[["FakeTransport", str], None]] = None
        self._inbound: Optional[asyncio.Queue] = None

    @property
    def inbound(self) -> asyncio.Queue:
        if self._inbound is None:
            self._inbound = asyncio.Queue()
        return self._inbound

    @property
    def sent_json(self) -> List[dict]:
        return [json.loads(m) for m in self.sent]

    def feed(self, frame: str) -> None:
        self.inbound.put_nowait(frame)

    def hang_up(self) -> None:
        self.inbound.put_nowait(self._EOF)

    async def send(self, message: str) -> None:
        if self.closed or self.fail_sends:
            raise SendError("fake transport closed")
        self.sent.append(message)
        if self.on_send is not None:
            self.on_send(self, message)

    async def recv(self, timeout: Optional[float] = None) -> str:
        if timeout is None:
            frame = await self.inbound.get()
        else:
            frame = await asyncio.wait_for(self.inbound.get(), timeout=timeout)
        if frame is self._EOF:
            raise ConnectionLost("fake peer hung up")
        return frame

    async def frames(self):
        while not self.closed:
            frame = await self.inbound.get()
            if frame is self._EOF:
                return
            yield frame

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


def identity_responder(order=("system_version", "system_chain", "system_name"), ack: Optional[str] = None):
    """
    on_send hook acting as a node: acknowledges the handshake, then holds the
    three identity requests and answers them together in ``order``.
    """
    held = {}

    def on_send(transport: FakeTransport, message: str) -> None:
        body = json.loads(message)
        if body.get("type") == "handshake":
            transport.feed(ack if ack is not None else handshake_ack())
            return
        held[body["method"]] = body["id"]
        if len(held) == len(IDENTITY_ANSWERS):
            for method in order:
                transport.feed(rpc_result(held[method], IDENTITY_ANSWERS[method]))

    return on_send


def fake_factory(transport: FakeTransport):
    async def factory(uri: str) -> FakeTransport:
        transport.uri = uri
        return transport
    return factory


def answer_as_node(frame, genesis_hex: str = GENESIS_HEX):
    """Reply a stub node sends for one inbound frame; None means stay silent."""
    body = json.loads(frame)
    if body.get("type") == "handshake":
        return handshake_ack(genesis_hex)
    method = body.get("method")
    if method in IDENTITY_ANSWERS:
        return rpc_result(body["id"], IDENTITY_ANSWERS[method])
    return rpc_error(body["id"], -32601, "Method not found")


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def threaded_stub_node():
    """
    Start a blocking websockets stub node in a background thread and return
    a factory ``start(genesis_hex) -> ws_url``. Used by the CLI tests, which
    run their own event loop through asyncio.run.
    """
    from websockets.sync.server import serve

    servers = []

    def start(genesis_hex: str = GENESIS_HEX) -> str:
        def handler(websocket):
            for frame in websocket:
                reply = answer_as_node(frame, genesis_hex)
                if reply is not None:
                    websocket.send(reply)

        server = serve(handler, "127.0.0.1", 0)
        servers.append(server)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        port = server.socket.getsockname()[1]
        return f"ws://127.0.0.1:{port}"

    yield start

    for server in servers:
        server.shutdown()
