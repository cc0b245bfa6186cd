"""Tests for transport construction and teardown."""

import socket
import subprocess
import sys

import pytest

from nvimclient.errors import SpawnError, SpawnReason, TransportError
from nvimclient.transport import TransportKind, connect_tcp, parse_address, spawn_child


def test_parse_address_forms() -> None:
    assert parse_address(("localhost", 7450)) == ("localhost", 7450)
    assert parse_address("127.0.0.1:6666") == ("127.0.0.1", 6666)
    assert parse_address("[::1]:7000") == ("::1", 7000)
    assert parse_address("example.org") == ("example.org", 6666)
    assert parse_address(":9000") == ("127.0.0.1", 9000)


def test_connect_refused_is_a_connect_error() -> None:
    scratch = socket.socket()
    scratch.bind(("127.0.0.1", 0))
    port = scratch.getsockname()[1]
    scratch.close()
    with pytest.raises(TransportError) as exc_info:
        connect_tcp(("127.0.0.1", port), timeout=2)
    assert exc_info.value.code == "CONNECT_FAILED"
    assert exc_info.value.details["port"] == port


def test_tcp_round_trip_and_close() -> None:
    listener = socket.create_server(("127.0.0.1", 0))
    transport = connect_tcp(listener.getsockname())
    server_side, _ = listener.accept()
    try:
        assert transport.kind is TransportKind.TCP
        transport.write(b"ping")
        assert server_side.recv(4) == b"ping"
        server_side.sendall(b"pong")
        assert transport.read() == b"pong"
        transport.close()
        assert transport.closed is True
        assert server_side.recv(4) == b""
        assert transport.read() == b""
        with pytest.raises(TransportError):
            transport.write(b"late")
    finally:
        server_side.close()
        listener.close()


def test_missing_executable_is_start_failed(tmp_path) -> None:
    with pytest.raises(SpawnError) as exc_info:
        spawn_child(str(tmp_path / "no-such-nvim"), ["--embed"])
    assert exc_info.value.reason is SpawnReason.START_FAILED
    assert exc_info.value.code == "SPAWN_FAILED"


class _FakeProcess:
    def __init__(self, stdin, stdout):
        self.stdin = stdin
        self.stdout = stdout
        self.pid = 4242
        self.killed = False
        self.waited = False

    def kill(self) -> None:
        self.killed = True

    def wait(self, timeout=None) -> int:
        self.waited = True
        return -9


class _FakeStream:
    def __init__(self):
        self.closed = False

    def close(self) -> None:
        self.closed = True


@pytest.mark.parametrize(
    ("stdin", "stdout", "reason", "code"),
    [
        (None, _FakeStream(), SpawnReason.NO_STDIN, "NO_STDIN"),
        (_FakeStream(), None, SpawnReason.NO_STDOUT, "NO_STDOUT"),
    ],
)
def test_unpiped_stream_fails_spawn_and_reaps_the_process(stdin, stdout, reason, code) -> None:
    spawned: list[_FakeProcess] = []

    def fake_popen(command, **kwargs):
        assert kwargs["stdin"] == subprocess.PIPE
        assert kwargs["stdout"] == subprocess.PIPE
        proc = _FakeProcess(stdin, stdout)
        spawned.append(proc)
        return proc

    with pytest.raises(SpawnError) as exc_info:
        spawn_child("nvim", ["--embed"], popen=fake_popen)
    assert exc_info.value.reason is reason
    assert exc_info.value.code == code
    proc = spawned[0]
    assert proc.killed and proc.waited
    for stream in (stdin, stdout):
        if stream is not None:
            assert stream.closed


def test_child_transport_close_reaps_the_process() -> None:
    transport = spawn_child(sys.executable, ["-c", "import sys; sys.stdin.buffer.read()"])
    assert transport.kind is TransportKind.CHILD
    proc = transport.process
    transport.close()
    assert proc.poll() is not None
    transport.close()


def test_child_that_ignores_eof_is_terminated() -> None:
    script = "import signal, time\nsignal.signal(signal.SIGTERM, signal.SIG_IGN)\ntime.sleep(30)"
    transport = spawn_child(sys.executable, ["-c", script], shutdown_timeout=0.2)
    proc = transport.process
    transport.close()
    assert proc.poll() is not None
