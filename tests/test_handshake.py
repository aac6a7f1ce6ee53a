import json

import pytest

from conftest import GENESIS_HEX, OTHER_GENESIS_HEX, FakeTransport, fake_factory, handshake_ack
from nodeclient.config import Endpoint
from nodeclient.correlator import RpcCorrelator
from nodeclient.handshake import HandshakeEngine
from nodeclient.state import Connection, ConnectionState
from shared.errors import (
    ConnectError,
    GenesisMismatch,
    HandshakeTimeout,
    InvalidStateTransition,
    MalformedHandshakeResponse,
    NotAuthenticated,
    SendError,
)


def make_engine(timeout: float = 1.0):
    connection = Connection(Endpoint("ws://127.0.0.1:9944", bytes.fromhex(GENESIS_HEX)))
    return connection, HandshakeEngine(connection, timeout=timeout)


def acking(ack: str):
    def on_send(transport, message):
        if json.loads(message).get("type") == "handshake":
            transport.feed(ack)
    return on_send


@pytest.mark.asyncio
async def test_matching_genesis_authenticates(fake_transport):
    connection, engine = make_engine()
    fake_transport.on_send = acking(handshake_ack(GENESIS_HEX))

    ack = await engine.run(fake_factory(fake_transport))

    assert connection.state is ConnectionState.AUTHENTICATED
    assert connection.is_authenticated
    assert ack.genesis_hash == bytes.fromhex(GENESIS_HEX)
    hello = fake_transport.sent_json[0]
    assert hello["type"] == "handshake"
    assert hello["version"] == 1
    assert hello["genesis_hash"] == "0x" + GENESIS_HEX
    assert hello["capabilities"] == ["full"]


@pytest.mark.asyncio
async def test_ack_without_genesis_is_accepted(fake_transport):
    connection, engine = make_engine()
    fake_transport.on_send = acking(handshake_ack(None))

    await engine.run(fake_factory(fake_transport))

    assert connection.state is ConnectionState.AUTHENTICATED


@pytest.mark.asyncio
async def test_genesis_mismatch_fails_and_blocks_rpc(fake_transport):
    connection, engine = make_engine()
    fake_transport.on_send = acking(handshake_ack(OTHER_GENESIS_HEX))

    with pytest.raises(GenesisMismatch) as excinfo:
        await engine.run(fake_factory(fake_transport))

    assert connection.state is ConnectionState.FAILED
    assert connection.failure is excinfo.value
    assert excinfo.value.received == "0x" + OTHER_GENESIS_HEX

    correlator = RpcCorrelator(connection)
    with pytest.raises(NotAuthenticated):
        await correlator.dispatch("system_name")
    # only the handshake ever went out
    assert len(fake_transport.sent) == 1


@pytest.mark.asyncio
async def test_malformed_ack_fails(fake_transport):
    connection, engine = make_engine()
    fake_transport.on_send = acking("this is not a handshake")

    with pytest.raises(MalformedHandshakeResponse):
        await engine.run(fake_factory(fake_transport))
    assert connection.state is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_silent_peer_times_out(fake_transport):
    connection, engine = make_engine(timeout=0.05)

    with pytest.raises(HandshakeTimeout):
        await engine.run(fake_factory(fake_transport))
    assert connection.state is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_peer_hanging_up_during_handshake(fake_transport):
    connection, engine = make_engine()
    fake_transport.on_send = lambda transport, message: transport.hang_up()

    with pytest.raises(MalformedHandshakeResponse):
        await engine.run(fake_factory(fake_transport))
    assert connection.state is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_connect_error_fails_connection():
    connection, engine = make_engine()

    async def unreachable(uri):
        raise ConnectError(f"cannot connect to {uri}")

    with pytest.raises(ConnectError):
        await engine.run(unreachable)
    assert connection.state is ConnectionState.FAILED
    assert connection.transport is None


@pytest.mark.asyncio
async def test_send_failure_during_handshake(fake_transport):
    connection, engine = make_engine()
    fake_transport.fail_sends = True

    with pytest.raises(SendError):
        await engine.run(fake_factory(fake_transport))
    assert connection.state is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_engine_is_single_use(fake_transport):
    connection, engine = make_engine()
    fake_transport.on_send = acking(handshake_ack())
    await engine.run(fake_factory(fake_transport))

    with pytest.raises(InvalidStateTransition):
        await engine.run(fake_factory(FakeTransport()))
    assert connection.state is ConnectionState.AUTHENTICATED


def test_dispatch_before_handshake_fails_fast():
    connection, _ = make_engine()
    with pytest.raises(NotAuthenticated):
        connection.require_authenticated()
