"""CLI commands for nvimclient.

Registers the top-level commands: version, api-info, metadata and call.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nvimclient import __logo__, __version__
from nvimclient.api_info import get_api_info
from nvimclient.cli.shared.logging_utils import configure_stderr, ensure_rotating_log_file
from nvimclient.config import load_config
from nvimclient.errors import NvimClientError
from nvimclient.session import Session

app = typer.Typer(
    name="nvimclient",
    help=f"{__logo__} nvimclient - talk msgpack-RPC to Nvim",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    configure_stderr(verbose)


def _parse_arg(raw: str) -> Any:
    """JSON when it parses, the plain string otherwise (so `version` needs no quotes)."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _render(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2, default=repr)


def _open_session(tcp: str | None, child: bool, nvim_bin: str | None) -> Session:
    if bool(tcp) == child:
        raise typer.BadParameter("pass exactly one of --tcp HOST:PORT or --child")
    config = load_config()
    if nvim_bin:
        config = config.model_copy(update={"nvim_bin": nvim_bin})
    if tcp:
        return Session.new_tcp(tcp, config)
    return Session.new_child([], config)


def _fail(exc: Exception) -> NoReturn:
    console.print(f"[red]Error: {escape(str(exc))}[/red]")
    raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show nvimclient version."""
    console.print(f"{__logo__} nvimclient v{__version__}")


@app.command("api-info")
def api_info_command(
    nvim_bin: str = typer.Option(None, "--nvim-bin", help="Nvim executable (default: NVIM_BIN or nvim)"),
    name_filter: str = typer.Option("", "--filter", "-f", help="Only functions whose name contains this"),
) -> None:
    """List the API functions reported by `nvim --api-info`."""
    ensure_rotating_log_file("api-info")
    try:
        info = get_api_info(nvim_bin)
    except NvimClientError as exc:
        _fail(exc)

    table = Table(title="Nvim API functions")
    table.add_column("Name", style="cyan")
    table.add_column("Parameters")
    table.add_column("Returns")
    table.add_column("Flags", style="dim")
    shown = 0
    for fn in info.functions:
        if name_filter and name_filter not in fn.name:
            continue
        flags = " ".join(flag for flag, on in (("can fail", fn.can_fail), ("async", fn.is_async)) if on)
        params = ", ".join(f"{kind} {name}" for kind, name in fn.parameters)
        table.add_row(fn.name, params, fn.return_type, flags)
        shown += 1
    console.print(table)
    console.print(f"[dim]{shown} of {len(info.functions)} functions[/dim]")


@app.command()
def metadata(
    tcp: str = typer.Option(None, "--tcp", help="Connect to HOST:PORT"),
    child: bool = typer.Option(False, "--child", help="Spawn an embedded Nvim"),
    nvim_bin: str = typer.Option(None, "--nvim-bin", help="Executable used with --child"),
) -> None:
    """Perform the handshake and print the extension type ids."""
    ensure_rotating_log_file("metadata")
    try:
        with _open_session(tcp, child, nvim_bin) as session:
            meta = session.metadata()
            channel_id = session.channel_id
    except NvimClientError as exc:
        _fail(exc)

    table = Table(title=f"Channel {channel_id}")
    table.add_column("Type", style="cyan")
    table.add_column("Extension id", justify="right")
    table.add_row("Buffer", str(meta.buffer_id))
    table.add_row("Window", str(meta.window_id))
    table.add_row("Tabpage", str(meta.tabpage_id))
    console.print(table)


@app.command()
def call(
    method: str = typer.Argument(..., help="RPC method, e.g. nvim_get_vvar"),
    args: list[str] = typer.Argument(None, help="Parameters; JSON values, bare words are strings"),
    tcp: str = typer.Option(None, "--tcp", help="Connect to HOST:PORT"),
    child: bool = typer.Option(False, "--child", help="Spawn an embedded Nvim"),
    nvim_bin: str = typer.Option(None, "--nvim-bin", help="Executable used with --child"),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Seconds to wait (default: configured call_timeout)"),
) -> None:
    """Call one RPC method and print its result."""
    ensure_rotating_log_file("call")
    params = [_parse_arg(raw) for raw in args or []]
    try:
        with _open_session(tcp, child, nvim_bin) as session:
            if timeout is None:
                result = session.call_sync(method, params)
            else:
                result = session.call_sync(method, params, timeout=timeout)
    except NvimClientError as exc:
        _fail(exc)
    console.print(_render(result), markup=False, highlight=False)


if __name__ == "__main__":
    app()
