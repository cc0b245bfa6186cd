"""Duplex byte transports to an Nvim peer: TCP, our own stdio, or a child's pipes."""

from __future__ import annotations

import socket
import subprocess
import sys
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Any

from loguru import logger

from nvimclient.errors import SpawnError, SpawnReason, TransportError

READ_CHUNK_SIZE = 64 * 1024
DEFAULT_PORT = 6666


class TransportKind(str, Enum):
    TCP = "tcp"
    STDIO = "stdio"
    CHILD = "child"


def parse_address(address: str | tuple[str, int], default_port: int = DEFAULT_PORT) -> tuple[str, int]:
    """Accept ``(host, port)``, ``"host:port"`` or a bare host."""
    if isinstance(address, tuple):
        host, port = address
        return str(host), int(port)
    text = address.strip()
    if text.startswith("["):
        # [::1]:6666
        host, _, rest = text[1:].partition("]")
        port_text = rest.lstrip(":")
        return host, int(port_text) if port_text else default_port
    if text.count(":") == 1:
        host, port_text = text.split(":")
        return host or "127.0.0.1", int(port_text)
    return text, default_port


@dataclass(slots=True)
class Transport:
    """One exclusively owned duplex byte stream.

    Exactly one of ``sock`` (TCP) or ``reader``/``writer`` (stdio, child) is set;
    ``process`` is only set for child transports.
    """

    kind: TransportKind
    sock: socket.socket | None = None
    reader: IO[bytes] | None = None
    writer: IO[bytes] | None = None
    process: subprocess.Popen[bytes] | None = None
    shutdown_timeout: float = 2.0
    description: str = ""
    _closed: bool = field(default=False, repr=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int = READ_CHUNK_SIZE) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means the peer closed its end."""
        if self._closed:
            return b""
        try:
            if self.kind is TransportKind.TCP:
                assert self.sock is not None
                return self.sock.recv(size)
            assert self.reader is not None
            read1 = getattr(self.reader, "read1", None)
            if read1 is not None:
                return read1(size)
            return self.reader.read(size)
        except (OSError, ValueError) as exc:
            if self._closed:
                return b""
            raise TransportError(f"read from {self.description} failed: {exc}") from exc

    def write(self, data: bytes) -> None:
        """Write all of ``data``. Callers serialize concurrent writes."""
        if self._closed:
            raise TransportError(f"{self.description} is closed")
        try:
            if self.kind is TransportKind.TCP:
                assert self.sock is not None
                self.sock.sendall(data)
                return
            assert self.writer is not None
            self.writer.write(data)
            self.writer.flush()
        except (OSError, ValueError) as exc:
            raise TransportError(f"write to {self.description} failed: {exc}") from exc

    def close(self) -> None:
        """Release the socket, pipes and child process. Safe to call repeatedly."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        logger.debug("Closing {} transport {}", self.kind.value, self.description)
        if self.kind is TransportKind.TCP:
            self._close_socket()
        elif self.kind is TransportKind.CHILD:
            self._close_child()
        else:
            # The process-wide standard streams are not ours to close.
            try:
                if self.writer is not None:
                    self.writer.flush()
            except (OSError, ValueError):
                pass

    def _close_socket(self) -> None:
        assert self.sock is not None
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    def _close_child(self) -> None:
        # EOF on stdin asks the child to exit; its stdout is closed only once it
        # has, since the reader thread may still be blocked reading it.
        _close_quietly(self.writer)
        if self.process is not None:
            reap_process(self.process, self.shutdown_timeout)
        _close_quietly(self.reader)

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def reap_process(proc: Any, timeout: float) -> None:
    """Wait for ``proc`` to exit, escalating to terminate and then kill."""
    try:
        proc.wait(timeout=timeout)
        return
    except subprocess.TimeoutExpired:
        pass
    proc.terminate()
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def from_socket(sock: socket.socket, description: str = "") -> Transport:
    """Wrap an already connected stream socket."""
    return Transport(kind=TransportKind.TCP, sock=sock, description=description or "socket")


def connect_tcp(address: str | tuple[str, int], timeout: float | None = None) -> Transport:
    """Open a TCP connection to a listening peer."""
    host, port = parse_address(address)
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as exc:
        raise TransportError(
            f"cannot connect to {host}:{port}: {exc}",
            code="CONNECT_FAILED",
            details={"host": host, "port": port},
        ) from exc
    # Reads block for the session's lifetime.
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    logger.debug("Connected to {}:{}", host, port)
    return from_socket(sock, f"{host}:{port}")


def from_standard_io() -> Transport:
    """Use this process's stdin/stdout, as when we are embedded by Nvim."""
    return Transport(
        kind=TransportKind.STDIO,
        reader=sys.stdin.buffer,
        writer=sys.stdout.buffer,
        description="stdio",
    )


def spawn_child(
    executable: str,
    args: Sequence[str] = (),
    *,
    shutdown_timeout: float = 2.0,
    popen: Callable[..., Any] = subprocess.Popen,
) -> Transport:
    """Start ``executable`` with stdin and stdout piped to us."""
    command = [executable, *args]
    try:
        proc = popen(command, stdin=subprocess.PIPE, stdout=subprocess.PIPE)
    except OSError as exc:
        raise SpawnError(SpawnReason.START_FAILED, f"cannot start {executable}: {exc}", executable) from exc

    reason: SpawnReason | None = None
    if proc.stdin is None:
        reason = SpawnReason.NO_STDIN
    elif proc.stdout is None:
        reason = SpawnReason.NO_STDOUT
    if reason is not None:
        for stream in (proc.stdin, proc.stdout):
            if stream is not None:
                stream.close()
        proc.kill()
        proc.wait()
        which = "input" if reason is SpawnReason.NO_STDIN else "output"
        raise SpawnError(reason, f"{executable} started without a piped standard {which}", executable)

    logger.debug("Spawned {} (pid {})", command, proc.pid)
    return Transport(
        kind=TransportKind.CHILD,
        reader=proc.stdout,
        writer=proc.stdin,
        process=proc,
        shutdown_timeout=shutdown_timeout,
        description=f"{executable} (pid {proc.pid})",
    )


def _close_quietly(stream: IO[bytes] | None) -> None:
    if stream is None:
        return
    try:
        stream.close()
    except (OSError, ValueError):
        pass
