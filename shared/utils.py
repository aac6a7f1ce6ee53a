from __future__ import annotations
import re
from typing import Any
from urllib.parse import urlparse

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Helpers the envelope parser, the handshake engine and the config loader
call to decide whether a value coming from the wire or the user is usable.
"""

GENESIS_HASH_BYTES = 32

_HEX_RE = re.compile(r'^[0-9a-fA-F]+$')
_WS_SCHEMES = ("ws", "wss")


def is_hex_hash(s: str, length: int = GENESIS_HASH_BYTES) -> bool:
    """
    returns True if ``s`` is ``length`` bytes of hex, with or without a 0x prefix.
    """
    if not isinstance(s, str):
        return False
    if s[:2] in ("0x", "0X"):
        s = s[2:]
    return len(s) == length * 2 and bool(_HEX_RE.fullmatch(s))


def parse_hex_hash(s: str, length: int = GENESIS_HASH_BYTES) -> bytes:
    """
    Decode a hex hash into bytes.

    Raises ValueError when the value is not ``length`` bytes of hex.
    """
    if not is_hex_hash(s, length):
        raise ValueError(f"expected {length * 2} hex characters, got {s!r}")
    if s[:2] in ("0x", "0X"):
        s = s[2:]
    return bytes.fromhex(s)


def hash_to_hex(value: bytes) -> str:
    """0x-prefixed lowercase hex, the form Substrate nodes use on the wire"""
    return "0x" + value.hex()


def is_ws_uri(s: str) -> bool:
    """
    Accepts 'ws://host[:port][/path]' or 'wss://...'.

    - scheme must be ws or wss
    - host must be non-empty
    - port, if given, must be between 1 and 65535
    """
    if not isinstance(s, str):
        return False
    try:
        parsed = urlparse(s)
        if parsed.scheme not in _WS_SCHEMES or not parsed.hostname:
            return False
        port = parsed.port
    except ValueError:
        return False
    return port is None or 0 < port <= 65535


def is_rpc_id(value: Any) -> bool:
    """JSON-RPC ids we issue are plain positive ints; bool is an int subclass in Python"""
    return isinstance(value, int) and not isinstance(value, bool)
