from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import json

from shared.errors import MalformedEnvelope
from shared.utils import hash_to_hex, is_hex_hash, is_rpc_id, parse_hex_hash

JSONRPC_VERSION = "2.0"
HANDSHAKE_TYPE = "handshake"
HANDSHAKE_VERSION = 1


def _loads(raw: str | bytes) -> Any:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEnvelope(f"Frame is not UTF-8: {e}")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedEnvelope(f"Invalid JSON: {e}")


def _dumps(data: Dict[str, Any]) -> str:
    return json.dumps(data, separators=(',', ':'))


@dataclass
class RpcRequest:
    """
    Outbound JSON-RPC 2.0 request:
    {
    "id": INT,
    "jsonrpc": "2.0",
    "method": "STRING",
    "params": [ ... ]
    }
    """
    id: int
    method: str
    params: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'jsonrpc': JSONRPC_VERSION,
            'method': self.method,
            'params': list(self.params),
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())


@dataclass
class RpcResponse:
    """
    Inbound JSON-RPC 2.0 response, exactly one of result / error:
    {"id": INT, "jsonrpc": "2.0", "result": ANY}
    {"id": INT, "jsonrpc": "2.0", "error": {"code": INT, "message": "STRING", "data"?: ANY}}
    """
    id: int
    result: Any = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_json(cls, raw: str | bytes) -> 'RpcResponse':
        """Parse a frame into a response, validating structure"""
        return cls.from_dict(_loads(raw))

    @classmethod
    def from_dict(cls, data: Any) -> 'RpcResponse':
        """Create a response from a decoded frame, validating required fields"""
        if not isinstance(data, dict):
            raise MalformedEnvelope("Response must be a JSON object")
        if 'id' not in data:
            raise MalformedEnvelope("Missing required field: 'id'")
        if not is_rpc_id(data['id']):
            raise MalformedEnvelope(f"'id' must be an integer, got {data['id']!r}")
        if data.get('jsonrpc', JSONRPC_VERSION) != JSONRPC_VERSION:
            raise MalformedEnvelope(f"Unsupported jsonrpc version: {data['jsonrpc']!r}")

        has_result = 'result' in data
        has_error = 'error' in data
        if has_result == has_error:
            raise MalformedEnvelope("Response must carry exactly one of 'result' or 'error'")

        error = data.get('error')
        if has_error and not isinstance(error, dict):
            raise MalformedEnvelope("'error' must be an object")

        return cls(id=data['id'], result=data.get('result'), error=error)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'id': self.id, 'jsonrpc': JSONRPC_VERSION}
        if self.error is not None:
            result['error'] = self.error
        else:
            result['result'] = self.result
        return result

    def to_json(self) -> str:
        return _dumps(self.to_dict())


@dataclass
class HandshakeMessage:
    """
    Handshake frame, sent once before any RPC traffic:
    {
    "type": "handshake",
    "version": INT,
    "name": "STRING",
    "chain": "STRING",
    "genesis_hash": "0x + 64 hex",
    "capabilities": ["STRING", ...]
    }

    Only ``version`` is required on an acknowledgement; ``genesis_hash`` is
    checked whenever the peer includes it.
    """
    version: int
    genesis_hash: Optional[bytes]
    name: str = ""
    chain: str = ""
    capabilities: List[str] = field(default_factory=list)

    @classmethod
    def create(cls, genesis_hash: bytes, name: str = "my-node", chain: str = "my-chain",
               capabilities: Optional[Sequence[str]] = None) -> 'HandshakeMessage':
        return cls(
            version=HANDSHAKE_VERSION,
            genesis_hash=genesis_hash,
            name=name,
            chain=chain,
            capabilities=list(capabilities) if capabilities is not None else ["full"],
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> 'HandshakeMessage':
        return cls.from_dict(_loads(raw))

    @classmethod
    def from_dict(cls, data: Any) -> 'HandshakeMessage':
        if not isinstance(data, dict):
            raise MalformedEnvelope("Handshake must be a JSON object")
        if data.get('type', HANDSHAKE_TYPE) != HANDSHAKE_TYPE:
            raise MalformedEnvelope(f"Unexpected message type: {data['type']!r}")

        version = data.get('version')
        if not is_rpc_id(version) or version < 0:
            raise MalformedEnvelope(f"'version' must be a non-negative integer, got {version!r}")

        genesis_hash = None
        if data.get('genesis_hash') is not None:
            if not is_hex_hash(data['genesis_hash']):
                raise MalformedEnvelope(f"'genesis_hash' is not a 32-byte hex hash: {data['genesis_hash']!r}")
            genesis_hash = parse_hex_hash(data['genesis_hash'])

        name = data.get('name', "")
        chain = data.get('chain', "")
        capabilities = data.get('capabilities', [])
        if not isinstance(name, str) or not isinstance(chain, str):
            raise MalformedEnvelope("'name' and 'chain' must be strings")
        if not isinstance(capabilities, list) or not all(isinstance(c, str) for c in capabilities):
            raise MalformedEnvelope("'capabilities' must be a list of strings")

        return cls(
            version=version,
            genesis_hash=genesis_hash,
            name=name,
            chain=chain,
            capabilities=capabilities,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'type': HANDSHAKE_TYPE,
            'version': self.version,
            'name': self.name,
            'chain': self.chain,
            'capabilities': list(self.capabilities),
        }
        if self.genesis_hash is not None:
            result['genesis_hash'] = hash_to_hex(self.genesis_hash)
        return result

    def to_json(self) -> str:
        return _dumps(self.to_dict())
