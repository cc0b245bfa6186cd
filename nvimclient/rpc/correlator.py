"""Call correlation over one duplex stream.

Callers on any thread issue requests through :meth:`CallCorrelator.call`; a
single reader thread decodes the inbound stream and hands each response to the
:class:`PendingCall` registered under its id. Notifications go to a bounded
inbox. When the stream ends or turns out to be undecodable, every pending and
future call fails with :class:`ConnectionClosedError`.
"""

from __future__ import annotations

import asyncio
import queue
import threading
from collections.abc import Generator, Sequence
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any

from loguru import logger

from nvimclient.errors import (
    CallTimeoutError,
    ConnectionClosedError,
    NvimClientError,
    ProtocolError,
    RpcError,
    TransportError,
)
from nvimclient.rpc.codec import MessageDecoder, encode
from nvimclient.rpc.protocol import Notification, Request, Response
from nvimclient.transport import Transport

ID_SPACE = 2**32
UNSUPPORTED_REQUEST_ERROR = "requests from the peer are not supported by this client"


@dataclass(slots=True)
class CorrelatorStats:
    """Counters kept for diagnosing protocol anomalies."""

    calls_issued: int = 0
    responses_delivered: int = 0
    unknown_responses: int = 0
    notifications_received: int = 0
    notifications_dropped: int = 0
    unsupported_requests: int = 0


class PendingCall:
    """Handle for one in-flight call; wait on it with :meth:`result` or ``await``."""

    def __init__(self, call_id: int, method: str):
        self.id = call_id
        self.method = method
        self._future: Future[Any] = Future()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> Any:
        """Block until the response arrives and return its result.

        Raises:
            RpcError: the peer answered with an error.
            ConnectionClosedError: the session closed before a response arrived.
            CallTimeoutError: ``timeout`` elapsed first. The call stays pending.
        """
        try:
            return self._future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            raise CallTimeoutError(self.method, timeout or 0.0) from exc

    def __await__(self) -> Generator[Any, None, Any]:
        return asyncio.wrap_future(self._future).__await__()

    def _resolve(self, response: Response) -> None:
        if response.error is not None:
            self._future.set_exception(RpcError(self.method, response.error))
        else:
            self._future.set_result(response.result)

    def _fail(self, exc: NvimClientError) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<PendingCall id={self.id} method={self.method!r} {state}>"


class CallCorrelator:
    """Serializes callers onto one stream and routes responses back by id."""

    def __init__(self, transport: Transport, *, notification_queue_size: int = 1024):
        self.transport = transport
        self.stats = CorrelatorStats()
        self._pending: dict[int, PendingCall] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._next_id = 0
        self._closed_error: ConnectionClosedError | None = None
        self._notifications: queue.Queue[Notification] = queue.Queue(maxsize=notification_queue_size)
        self._reader_thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the reader thread. Called once, right after construction."""
        if self._reader_thread is not None:
            return
        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            name=f"nvimclient-reader-{self.transport.kind.value}",
            daemon=True,
        )
        self._reader_thread.start()

    @property
    def closed(self) -> bool:
        return self._closed_error is not None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def next_id(self) -> int:
        """Return a fresh id, unique among pending calls."""
        with self._lock:
            return self._allocate_id_locked()

    def _allocate_id_locked(self) -> int:
        if len(self._pending) >= ID_SPACE:
            raise NvimClientError("no free call ids", code="ID_EXHAUSTED")
        while True:
            call_id = self._next_id
            self._next_id = (self._next_id + 1) % ID_SPACE
            if call_id not in self._pending:
                return call_id

    def call(self, method: str, params: Sequence[Any] = ()) -> PendingCall:
        """Send a request and return the handle its response will complete."""
        with self._lock:
            self._raise_if_closed()
            call_id = self._allocate_id_locked()
        request = Request(id=call_id, method=method, params=list(params))
        try:
            payload = encode(request)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ProtocolError(f"cannot encode call to {method}: {exc}") from exc

        pending = PendingCall(call_id, method)
        # Registered before writing so a fast response always finds its slot.
        with self._lock:
            self._raise_if_closed()
            self._pending[call_id] = pending
        try:
            with self._write_lock:
                self.transport.write(payload)
        except TransportError:
            with self._lock:
                self._pending.pop(call_id, None)
            self._raise_if_closed()
            raise
        with self._lock:
            self.stats.calls_issued += 1
        logger.debug("-> call {} {}", call_id, method)
        return pending

    def call_sync(self, method: str, params: Sequence[Any] = (), timeout: float | None = None) -> Any:
        return self.call(method, params).result(timeout=timeout)

    def notify(self, method: str, params: Sequence[Any] = ()) -> None:
        """Send a notification; no response is expected."""
        self._raise_if_closed()
        try:
            payload = encode(Notification(method=method, params=list(params)))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ProtocolError(f"cannot encode notification {method}: {exc}") from exc
        try:
            with self._write_lock:
                self.transport.write(payload)
        except TransportError:
            self._raise_if_closed()
            raise

    def next_notification(self, timeout: float | None = None) -> Notification | None:
        """Pop the oldest unread notification, or ``None`` once ``timeout`` passes."""
        try:
            return self._notifications.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self, reason: str = "session closed") -> None:
        """Fail all pending calls, then release the transport."""
        self._shutdown(ConnectionClosedError(reason))
        self.transport.close()
        thread = self._reader_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def _raise_if_closed(self) -> None:
        error = self._closed_error
        if error is not None:
            raise ConnectionClosedError(error.message, cause=error.cause)

    def _shutdown(self, error: ConnectionClosedError) -> None:
        with self._lock:
            if self._closed_error is None:
                self._closed_error = error
            pending = list(self._pending.values())
            self._pending.clear()
        for call in pending:
            call._fail(self._closed_error)

    def _reader_loop(self) -> None:
        decoder = MessageDecoder()
        reason = "connection closed by peer"
        logger.debug("Reader started for {}", self.transport.description)
        try:
            while True:
                chunk = self.transport.read()
                if not chunk:
                    break
                decoder.feed(chunk)
                for message in decoder:
                    self._dispatch(message)
        except ProtocolError as exc:
            reason = f"protocol error: {exc.message}"
            logger.error("Reader stopped on {}: {}", self.transport.description, exc.message)
        except TransportError as exc:
            reason = f"transport error: {exc.message}"
            logger.error("Reader stopped on {}: {}", self.transport.description, exc.message)
        finally:
            self._shutdown(ConnectionClosedError(reason, cause=reason))
            logger.debug("Reader finished for {}: {}", self.transport.description, reason)

    def _dispatch(self, message: Request | Response | Notification) -> None:
        if isinstance(message, Response):
            with self._lock:
                pending = self._pending.pop(message.id, None)
            if pending is None:
                self.stats.unknown_responses += 1
                logger.warning("Dropping response for unknown call id {}", message.id)
                return
            self.stats.responses_delivered += 1
            logger.debug("<- response {} {}", message.id, "ok" if message.ok else "error")
            pending._resolve(message)
        elif isinstance(message, Notification):
            self.stats.notifications_received += 1
            self._enqueue_notification(message)
        else:
            self.stats.unsupported_requests += 1
            logger.warning("Peer sent unsupported request {} ({})", message.method, message.id)
            # The reader thread never takes the write lock.
            threading.Thread(
                target=self._reject_request,
                args=(message,),
                name="nvimclient-reject",
                daemon=True,
            ).start()

    def _enqueue_notification(self, notification: Notification) -> None:
        while True:
            try:
                self._notifications.put_nowait(notification)
                return
            except queue.Full:
                try:
                    self._notifications.get_nowait()
                except queue.Empty:
                    continue
                self.stats.notifications_dropped += 1
                logger.warning("Notification inbox full, dropped the oldest entry")

    def _reject_request(self, request: Request) -> None:
        reply = Response(id=request.id, error=[0, UNSUPPORTED_REQUEST_ERROR], result=None)
        try:
            with self._write_lock:
                self.transport.write(encode(reply))
        except TransportError as exc:
            logger.warning("Could not reject request {}: {}", request.id, exc.message)
