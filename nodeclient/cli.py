#!/usr/bin/env python3

from __future__ import annotations
import asyncio
from typing import Optional

import click
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shared.errors import (
    ConfigError,
    ConnectError,
    ConnectionLost,
    HandshakeError,
    NodeClientError,
    QueryError,
    SendError,
)
from shared.log import configure_root_logging, get_logger
from shared.utils import is_hex_hash, is_ws_uri

from .config import ClientSettings, load_settings
from .orchestrator import NodeIdentity, QueryOrchestrator

app = typer.Typer(help="Handshake with a Substrate node and print its identity", add_completion=False)
console = Console()
logger = get_logger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_CONNECT = 3
EXIT_HANDSHAKE = 4
EXIT_QUERY = 5
EXIT_CANCELLED = 130


class NodeAddressType(click.ParamType):
    name = "ws-uri"

    def convert(self, value, param, ctx):
        if not is_ws_uri(value):
            self.fail(f"{value!r} is not a ws:// or wss:// URI", param, ctx)
        return value


class GenesisHashType(click.ParamType):
    name = "hex64"

    def convert(self, value, param, ctx):
        if not is_hex_hash(value):
            self.fail(f"{value!r} is not a 32-byte hex hash", param, ctx)
        return value[2:].lower() if value[:2] in ("0x", "0X") else value.lower()


def exit_code_for(error: BaseException) -> int:
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    if isinstance(error, ConnectError):
        return EXIT_CONNECT
    if isinstance(error, HandshakeError):
        return EXIT_HANDSHAKE
    if isinstance(error, (QueryError, ConnectionLost, SendError)):
        return EXIT_QUERY
    return 1


def render_identity(identity: NodeIdentity, node_address: str) -> None:
    table = Table(title=f"Node at {node_address}")
    table.add_column("Query")
    table.add_column("Value")
    for label, value in identity.as_dict().items():
        table.add_row(label, value)
    console.print(table)


async def identify(settings: ClientSettings) -> NodeIdentity:
    orchestrator = QueryOrchestrator(settings.endpoint(), settings)
    return await orchestrator.run()


@app.command()
def main(
    node_address: Optional[str] = typer.Option(
        None, "--node-address", click_type=NodeAddressType(),
        help="Node address to connect to [default: ws://127.0.0.1:9944]",
    ),
    genesis_hash: Optional[str] = typer.Option(
        None, "--genesis-hash", click_type=GenesisHashType(),
        help="Genesis hash of the chain (hex, 32 bytes)",
    ),
):
    """Connect, handshake, and query system_name / system_chain / system_version."""
    configure_root_logging()
    try:
        settings = load_settings().with_overrides(node_address=node_address, genesis_hash=genesis_hash)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration[/]: {escape(str(e))}")
        raise typer.Exit(code=EXIT_CONFIG)

    try:
        identity = asyncio.run(identify(settings))
    except KeyboardInterrupt:
        console.print("[yellow]Cancelled[/]")
        raise typer.Exit(code=EXIT_CANCELLED)
    except NodeClientError as e:
        logger.error("Run failed (%s): %s", e.kind, e)
        console.print(f"[red]{e.kind}[/]: {escape(str(e))}")
        raise typer.Exit(code=exit_code_for(e))

    render_identity(identity, settings.node_address)
    raise typer.Exit(code=EXIT_OK)


if __name__ == "__main__":
    app()
