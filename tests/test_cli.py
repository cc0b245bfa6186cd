"""Tests for the nvimclient command line."""

import pytest
from typer.testing import CliRunner

import nvimclient.cli.commands as commands
from nvimclient.api_info import ApiInfo, Function
from nvimclient.config import SessionConfig
from nvimclient.errors import ConnectionClosedError, TransportError
from nvimclient.metadata import Metadata

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_log_files(monkeypatch, tmp_path):
    monkeypatch.setattr(commands, "ensure_rotating_log_file", lambda name, level="INFO": tmp_path / f"{name}.log")
    monkeypatch.setattr(commands, "load_config", lambda: SessionConfig(nvim_bin="nvim"))


class _FakeSession:
    def __init__(self):
        self.calls = []
        self.channel_id = 4

    def metadata(self) -> Metadata:
        return Metadata(buffer_id=0, window_id=1, tabpage_id=2)

    def call_sync(self, method, params, timeout=None):
        self.calls.append((method, params, timeout))
        return {"method": method, "params": params}

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return None


def test_version() -> None:
    result = runner.invoke(commands.app, ["version"])
    assert result.exit_code == 0
    assert "nvimclient v" in result.output


def test_call_over_tcp_parses_json_args(monkeypatch) -> None:
    fake = _FakeSession()
    opened = {}

    def fake_new_tcp(address, config):
        opened["address"] = address
        return fake

    monkeypatch.setattr(commands.Session, "new_tcp", staticmethod(fake_new_tcp))
    result = runner.invoke(commands.app, ["call", "nvim_get_vvar", "version", "[1, 2]", "--tcp", "127.0.0.1:6666"])
    assert result.exit_code == 0, result.output
    assert opened["address"] == "127.0.0.1:6666"
    assert fake.calls == [("nvim_get_vvar", ["version", [1, 2]], None)]
    assert '"method": "nvim_get_vvar"' in result.output


def test_call_passes_an_explicit_timeout(monkeypatch) -> None:
    fake = _FakeSession()
    monkeypatch.setattr(commands.Session, "new_tcp", staticmethod(lambda address, config: fake))
    result = runner.invoke(commands.app, ["call", "echo", "--tcp", "127.0.0.1:6666", "--timeout", "2.5"])
    assert result.exit_code == 0, result.output
    assert fake.calls == [("echo", [], 2.5)]


def test_call_with_child_uses_nvim_bin_override(monkeypatch) -> None:
    seen = {}

    def fake_new_child(args, config):
        seen["nvim_bin"] = config.nvim_bin
        return _FakeSession()

    monkeypatch.setattr(commands.Session, "new_child", staticmethod(fake_new_child))
    result = runner.invoke(commands.app, ["call", "echo", "--child", "--nvim-bin", "/opt/nvim"])
    assert result.exit_code == 0, result.output
    assert seen["nvim_bin"] == "/opt/nvim"


def test_call_requires_exactly_one_transport() -> None:
    result = runner.invoke(commands.app, ["call", "echo"])
    assert result.exit_code != 0
    result = runner.invoke(commands.app, ["call", "echo", "--child", "--tcp", "h:1"])
    assert result.exit_code != 0


def test_call_reports_errors(monkeypatch) -> None:
    def fake_new_tcp(address, config):
        raise TransportError("cannot connect to h:1: refused", code="CONNECT_FAILED")

    monkeypatch.setattr(commands.Session, "new_tcp", staticmethod(fake_new_tcp))
    result = runner.invoke(commands.app, ["call", "echo", "--tcp", "h:1"])
    assert result.exit_code == 1
    assert "CONNECT_FAILED" in result.output


def test_metadata_prints_type_ids(monkeypatch) -> None:
    monkeypatch.setattr(commands.Session, "new_child", staticmethod(lambda args, config: _FakeSession()))
    result = runner.invoke(commands.app, ["metadata", "--child"])
    assert result.exit_code == 0, result.output
    assert "Buffer" in result.output
    assert "Tabpage" in result.output
    assert "Channel 4" in result.output


def test_metadata_reports_closed_connection(monkeypatch) -> None:
    def fake_new_child(args, config):
        raise ConnectionClosedError("connection closed by peer")

    monkeypatch.setattr(commands.Session, "new_child", staticmethod(fake_new_child))
    result = runner.invoke(commands.app, ["metadata", "--child"])
    assert result.exit_code == 1
    assert "connection closed by peer" in result.output


def test_api_info_lists_filtered_functions(monkeypatch) -> None:
    info = ApiInfo(
        functions=[
            Function(name="nvim_buf_get_lines", parameters=[("Buffer", "buffer")], return_type="ArrayOf(String)", is_async=True),
            Function(name="nvim_command", parameters=[("String", "command")], can_fail=True),
        ]
    )
    monkeypatch.setattr(commands, "get_api_info", lambda nvim_bin: info)
    result = runner.invoke(commands.app, ["api-info", "--filter", "buf_"])
    assert result.exit_code == 0, result.output
    assert "nvim_buf_get_lines" in result.output
    assert "nvim_command" not in result.output
    assert "1 of 2 functions" in result.output
