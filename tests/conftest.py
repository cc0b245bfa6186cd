"""Pytest hooks and fixtures."""

import shutil
import socket
import sys
import threading
from pathlib import Path

import msgpack
import pytest

from nvimclient.config import SessionConfig
from nvimclient.rpc.correlator import CallCorrelator
from nvimclient.transport import from_socket

FIXTURES = Path(__file__).parent / "fixtures"
FAKE_NVIM = FIXTURES / "fake_nvim.py"

CAPABILITIES = {
    "functions": [
        {"name": "nvim_get_vvar", "parameters": [["String", "name"]], "return_type": "Object", "method": False},
    ],
    "types": {
        "Buffer": {"id": 0, "prefix": "nvim_buf_"},
        "Window": {"id": 1, "prefix": "nvim_win_"},
        "Tabpage": {"id": 2, "prefix": "nvim_tabpage_"},
    },
}


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "requires_nvim: needs a real nvim executable on PATH (skipped when absent)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip requires_nvim tests when nvim is not installed."""
    if shutil.which("nvim"):
        return
    skip = pytest.mark.skip(reason="nvim not found on PATH")
    for item in items:
        if "requires_nvim" in item.keywords:
            item.add_marker(skip)


class PeerEnd:
    """The peer's side of a socket pair, driven by the test."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.sock.settimeout(5.0)
        self._unpacker = msgpack.Unpacker(raw=False)

    def recv(self):
        while True:
            try:
                return next(self._unpacker)
            except StopIteration:
                pass
            data = self.sock.recv(65536)
            if not data:
                raise EOFError("client closed the connection")
            self._unpacker.feed(data)

    def send(self, value) -> None:
        self.sock.sendall(msgpack.packb(value, use_bin_type=True))

    def send_raw(self, data: bytes) -> None:
        self.sock.sendall(data)

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    def answer_handshake(self, result=None) -> threading.Thread:
        """Reply to the first request with ``result`` from a background thread."""
        if result is None:
            result = [1, CAPABILITIES]

        def _serve():
            _, msgid, _method, _params = self.recv()
            self.send([1, msgid, None, result])

        thread = threading.Thread(target=_serve, daemon=True)
        thread.start()
        return thread

    def serve_forever(self) -> threading.Thread:
        """Answer the handshake, echo params back, fail unknown methods."""

        def _serve():
            try:
                while True:
                    _, msgid, method, params = self.recv()
                    if method == "nvim_get_api_info":
                        self.send([1, msgid, None, [1, CAPABILITIES]])
                    elif method == "echo":
                        self.send([1, msgid, None, params])
                    else:
                        self.send([1, msgid, [0, f"Invalid method: {method}"], None])
            except (EOFError, OSError):
                return

        thread = threading.Thread(target=_serve, daemon=True)
        thread.start()
        return thread


@pytest.fixture
def socket_pair():
    client_sock, peer_sock = socket.socketpair()
    transport = from_socket(client_sock, "socketpair")
    peer = PeerEnd(peer_sock)
    yield transport, peer
    transport.close()
    peer.close()


@pytest.fixture
def correlator(socket_pair):
    transport, peer = socket_pair
    instance = CallCorrelator(transport, notification_queue_size=4)
    instance.start()
    yield instance, peer
    instance.close()


@pytest.fixture
def config() -> SessionConfig:
    return SessionConfig(handshake_timeout=5.0, call_timeout=None, child_shutdown_timeout=2.0)


@pytest.fixture
def child_config(config) -> SessionConfig:
    """Config that spawns the fake nvim script instead of nvim."""
    return config.model_copy(update={"nvim_bin": sys.executable})


@pytest.fixture
def tcp_peer():
    """Localhost listener that serves one fake nvim connection."""
    listener = socket.create_server(("127.0.0.1", 0))
    host, port = listener.getsockname()
    peers: list[PeerEnd] = []

    def _accept():
        conn, _ = listener.accept()
        peer = PeerEnd(conn)
        peers.append(peer)
        peer.serve_forever()

    threading.Thread(target=_accept, daemon=True).start()
    yield f"{host}:{port}"
    listener.close()
    for peer in peers:
        peer.close()
