from __future__ import annotations
import asyncio
from typing import AsyncIterator, Optional, Union

import websockets

from shared.errors import ConnectError, ConnectionLost, SendError
from shared.log import get_logger

logger = get_logger(__name__)

Frame = Union[str, bytes]


class WebSocketTransport:
    """
    One duplex WebSocket channel to a node.

    Owns exactly one live socket; never reconnects. Inbound frames are
    handed out in arrival order through ``recv`` / ``frames``; binary frames
    stay bytes so the envelope parser can reject invalid UTF-8.
    """

    def __init__(self, websocket: websockets.ClientConnection, uri: str) -> None:
        self.websocket = websocket
        self.uri = uri
        self._closed = False

    @classmethod
    async def connect(
        cls,
        uri: str,
        *,
        open_timeout: float = 10.0,
        ping_interval: Optional[float] = 15.0,
        ping_timeout: Optional[float] = 45.0,
    ) -> "WebSocketTransport":
        """Open the channel, raising ConnectError if the node cannot be reached"""
        try:
            websocket = await websockets.connect(
                uri,
                open_timeout=open_timeout,
                ping_interval=ping_interval,
                ping_timeout=ping_timeout,
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise ConnectError(f"cannot connect to {uri}: {e}") from e
        logger.debug("WebSocket open to %s", uri)
        return cls(websocket, uri)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: Frame) -> None:
        if self._closed:
            raise SendError(f"transport to {self.uri} is closed")
        try:
            await self.websocket.send(message)
        except websockets.exceptions.ConnectionClosed as e:
            raise SendError(f"peer at {self.uri} disconnected: {e}") from e

    async def recv(self, timeout: Optional[float] = None) -> Frame:
        """
        Wait for the next inbound frame.

        Raises ConnectionLost when the peer closed the channel and
        asyncio.TimeoutError when ``timeout`` elapses first.
        """
        if self._closed:
            raise ConnectionLost(f"transport to {self.uri} is closed")
        try:
            if timeout is None:
                raw = await self.websocket.recv()
            else:
                raw = await asyncio.wait_for(self.websocket.recv(), timeout=timeout)
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionLost(f"peer at {self.uri} closed the connection: {e}") from e
        return raw

    async def frames(self) -> AsyncIterator[Frame]:
        """Inbound frames until the channel closes"""
        while not self._closed:
            try:
                raw = await self.websocket.recv()
            except websockets.exceptions.ConnectionClosed as e:
                logger.debug("Inbound stream from %s ended: %s", self.uri, e)
                return
            yield raw

    async def close(self) -> None:
        """Close the channel; safe to call more than once"""
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close(code=1000)
        except Exception as e:
            logger.error(f"Error closing connection to {self.uri}: {e}")
