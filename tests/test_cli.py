import socket

import pytest
from typer.testing import CliRunner

from conftest import OTHER_GENESIS_HEX
from nodeclient import cli
from nodeclient.config import CONFIG_FILE_ENV, GENESIS_HASH_ENV, NODE_ADDRESS_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in (CONFIG_FILE_ENV, GENESIS_HASH_ENV, NODE_ADDRESS_ENV):
        monkeypatch.delenv(name, raising=False)


def test_full_run_reports_identity_and_exits_zero(threaded_stub_node):
    url = threaded_stub_node()

    result = runner.invoke(cli.app, ["--node-address", url])

    assert result.exit_code == 0, result.output
    assert "Substrate Node" in result.output
    assert "Development" in result.output
    assert "0.0.0-d70f8f9" in result.output


def test_genesis_flag_accepts_0x_prefix(threaded_stub_node):
    url = threaded_stub_node(OTHER_GENESIS_HEX)

    result = runner.invoke(cli.app, ["--node-address", url, "--genesis-hash", "0x" + OTHER_GENESIS_HEX.upper()])

    assert result.exit_code == cli.EXIT_OK, result.output


def test_wrong_chain_exits_with_handshake_failure(threaded_stub_node):
    url = threaded_stub_node(OTHER_GENESIS_HEX)

    result = runner.invoke(cli.app, ["--node-address", url])

    assert result.exit_code == cli.EXIT_HANDSHAKE
    assert "genesis-mismatch" in result.output


def test_unreachable_node_exits_with_connect_failure():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]

    result = runner.invoke(cli.app, ["--node-address", f"ws://127.0.0.1:{port}"])

    assert result.exit_code == cli.EXIT_CONNECT


@pytest.mark.parametrize(
    "args",
    [
        ["--genesis-hash", "abcd"],
        ["--node-address", "http://127.0.0.1:9944"],
        ["--unknown-flag"],
    ],
)
def test_bad_arguments_are_usage_errors(args):
    result = runner.invoke(cli.app, args)
    assert result.exit_code == cli.EXIT_CONFIG


def test_bad_environment_config_exits_with_config_error(monkeypatch):
    monkeypatch.setenv(NODE_ADDRESS_ENV, "not-a-uri")

    result = runner.invoke(cli.app, [])

    assert result.exit_code == cli.EXIT_CONFIG
    assert "Invalid configuration" in result.output
