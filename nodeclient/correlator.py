"""
Request/response correlation over a single authenticated connection.

Every outbound request gets the next integer id. The id is registered in the
pending table before the frame is sent, so a reply can never beat its own
registration. Inbound frames are matched on id only; arrival order does not
matter. Replies for unknown or retired ids are logged and dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterator, List, Optional, Sequence, Set

from shared.envelope import RpcRequest, RpcResponse
from shared.errors import (
    ConnectionLost,
    DuplicateResponse,
    MalformedEnvelope,
    NodeClientError,
    RequestCancelled,
    RequestTimeout,
    RpcError,
    SendError,
)
from shared.log import get_logger, log_event

from .state import Connection

logger = get_logger(__name__)


@dataclass
class PendingRequest:
    id: int
    method: str
    sent_at: float
    future: asyncio.Future = field(repr=False)
    deadline: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.future.done()

    def resolve(self, result: Any = None, error: Optional[BaseException] = None) -> None:
        """Settle the future once and stop its deadline"""
        if self.deadline is not None:
            self.deadline.cancel()
            self.deadline = None
        if self.future.done():
            return
        if error is None:
            self.future.set_result(result)
        else:
            self.future.set_exception(error)
            # waiters still get it raised; this only silences the unretrieved warning
            self.future.exception()


class RpcCorrelator:
    # delivered ids remembered for duplicate detection
    DELIVERED_HISTORY = 1024

    def __init__(self, connection: Connection, *, request_timeout: float = 10.0) -> None:
        self.connection = connection
        self.request_timeout = request_timeout
        self._ids: Iterator[int] = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}
        self._delivered: Set[int] = set()
        self._delivered_queue: Deque[int] = deque()
        self._reader: Optional[asyncio.Task] = None
        self._closed = False
        self.orphans = 0
        self.duplicates = 0

    # ---- introspection ----

    @property
    def pending_ids(self) -> List[int]:
        return sorted(self._pending)

    def is_live(self, request_id: int) -> bool:
        return request_id in self._pending

    # ---- outbound ----

    async def dispatch(self, method: str, params: Sequence[Any] = (),
                       timeout: Optional[float] = None) -> PendingRequest:
        """
        Send a request and return its pending entry without waiting for the reply.

        The request's deadline starts now; it expires as RequestTimeout whether
        or not anybody is waiting on it.
        """
        self.connection.require_authenticated()
        if self._closed:
            raise RequestCancelled("correlator is closed")

        timeout = self.request_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        pending = PendingRequest(
            id=request_id,
            method=method,
            sent_at=time.monotonic(),
            future=loop.create_future(),
        )
        # registered before the send completes
        self._pending[request_id] = pending
        pending.deadline = loop.call_later(timeout, self._expire, pending, timeout)

        request = RpcRequest(id=request_id, method=method, params=list(params))
        try:
            await self.connection.send(request.to_json())
        except SendError as e:
            self._pending.pop(request_id, None)
            pending.resolve(error=e)
            raise
        log_event(logger, "request-sent", request_id=request_id, method=method)
        return pending

    def _expire(self, pending: PendingRequest, timeout: float) -> None:
        """Retire a request whose deadline passed; a reply arriving later is an orphan"""
        if self._pending.get(pending.id) is not pending:
            return
        del self._pending[pending.id]
        error = RequestTimeout(pending.id, pending.method, timeout)
        pending.resolve(error=error)
        log_event(logger, "request-timeout", str(error), level="warning",
                  request_id=pending.id, method=pending.method)

    async def wait(self, pending: PendingRequest, timeout: Optional[float] = None) -> Any:
        """
        Wait for one request's reply.

        The deadline armed at dispatch applies. A ``timeout`` given here is
        also counted from ``sent_at``, not from the moment of the call.
        """
        if timeout is not None and not pending.done:
            remaining = pending.sent_at + timeout - time.monotonic()
            try:
                await asyncio.wait_for(asyncio.shield(pending.future), timeout=max(remaining, 0))
            except asyncio.TimeoutError:
                self._expire(pending, timeout)
        return await asyncio.shield(pending.future)

    async def call(self, method: str, params: Sequence[Any] = (), timeout: Optional[float] = None) -> Any:
        pending = await self.dispatch(method, params, timeout)
        return await self.wait(pending)

    # ---- inbound ----

    def handle_frame(self, raw: str | bytes) -> Optional[PendingRequest]:
        """
        Match one inbound frame to its pending request.

        Returns the request it resolved, or None when the frame was dropped.
        Never raises for bad peer input.
        """
        try:
            response = RpcResponse.from_json(raw)
        except MalformedEnvelope as e:
            log_event(logger, "malformed-response", f"Discarding inbound frame: {e}", level="warning")
            return None

        pending = self._pending.pop(response.id, None)
        if pending is None:
            if response.id in self._delivered:
                self.duplicates += 1
                error = DuplicateResponse(f"response for id {response.id} already delivered")
                log_event(logger, "duplicate-response", str(error), level="warning", request_id=response.id)
            else:
                self.orphans += 1
                log_event(logger, "orphan-response", "Discarding unsolicited response",
                          level="warning", request_id=response.id)
            return None

        self._remember_delivered(response.id)
        if pending.done:
            # waiter went away (cancelled); nothing left to deliver to
            pending.resolve()
            return pending

        if response.is_error:
            error = response.error or {}
            log_event(logger, "response-error", f"Error in response: {error}", level="error",
                      request_id=response.id, method=pending.method, error=error)
            pending.resolve(error=RpcError(error.get("code"), str(error.get("message", "")), error.get("data")))
        else:
            log_event(logger, "response-received", request_id=response.id, method=pending.method,
                      result=response.result)
            pending.resolve(result=response.result)
        return pending

    def _remember_delivered(self, request_id: int) -> None:
        self._delivered.add(request_id)
        self._delivered_queue.append(request_id)
        while len(self._delivered_queue) > self.DELIVERED_HISTORY:
            self._delivered.discard(self._delivered_queue.popleft())

    def start(self) -> asyncio.Task:
        """Spawn the reader task consuming the connection's inbound frames"""
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())
        return self._reader

    async def _read_loop(self) -> None:
        transport = self.connection.transport
        async for raw in transport.frames():
            self.handle_frame(raw)
        if not self._closed:
            self.fail_all(ConnectionLost(f"peer at {self.connection.endpoint.uri} closed the connection"))

    # ---- teardown ----

    def fail_all(self, error: NodeClientError) -> int:
        """Resolve every outstanding request with ``error``; returns how many"""
        pending, self._pending = self._pending, {}
        for request in pending.values():
            request.resolve(error=error)
        if pending:
            logger.warning("Failed %d outstanding request(s): %s", len(pending), error)
        return len(pending)

    def cancel_all(self, reason: str = "run cancelled") -> int:
        return self.fail_all(RequestCancelled(reason))

    async def close(self) -> None:
        """Stop reading and cancel whatever is still outstanding"""
        self._closed = True
        self.cancel_all("correlator closed")
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader
