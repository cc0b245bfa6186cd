"""Parsed view of the peer's API function list."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from typing import Any

import msgpack

from nvimclient.errors import ProtocolError, TransportError


@dataclass(slots=True)
class Function:
    """One entry of the ``functions`` array."""

    name: str
    parameters: list[tuple[str, str]] = field(default_factory=list)
    return_type: str = "void"
    is_async: bool = False
    can_fail: bool = False
    since: int | None = None
    deprecated_since: int | None = None

    def __str__(self) -> str:
        params = ", ".join(f"{kind} {name}" for kind, name in self.parameters)
        can_fail = "[can fail]" if self.can_fail else ""
        is_async = "async" if self.is_async else ""
        return f"{self.name}({params}) -> {self.return_type} {can_fail}{is_async}"


@dataclass(slots=True)
class ApiInfo:
    functions: list[Function] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    def find(self, name: str) -> Function | None:
        for function in self.functions:
            if function.name == name:
                return function
        return None


def _optional_int(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def parse_function(raw: Any) -> Function:
    if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
        raise ProtocolError(f"malformed function entry: {raw!r}"[:200])
    parameters: list[tuple[str, str]] = []
    for param in raw.get("parameters") or []:
        if not isinstance(param, (list, tuple)) or len(param) != 2:
            raise ProtocolError(f"malformed parameter in {raw['name']}: {param!r}")
        parameters.append((str(param[0]), str(param[1])))
    return Function(
        name=raw["name"],
        parameters=parameters,
        return_type=str(raw.get("return_type") or "void"),
        # Older peers used "async", newer ones "method".
        is_async=bool(raw.get("async", raw.get("method", False))),
        can_fail=bool(raw.get("can_fail", False)),
        since=_optional_int(raw.get("since")),
        deprecated_since=_optional_int(raw.get("deprecated_since")),
    )


def parse_api_info(value: Any) -> ApiInfo:
    """Build an :class:`ApiInfo` from a capability map."""
    if not isinstance(value, dict):
        raise ProtocolError("api info is not a map")
    functions = value.get("functions")
    if not isinstance(functions, list):
        raise ProtocolError("api info has no 'functions' array")
    return ApiInfo(functions=[parse_function(f) for f in functions], raw=value)


def get_api_info(executable: str | None = None) -> ApiInfo:
    """Run ``<executable> --api-info`` and parse its msgpack output."""
    if executable is None:
        from nvimclient.config import load_config

        executable = load_config().nvim_bin
    try:
        proc = subprocess.run([executable, "--api-info"], capture_output=True, check=False)
    except OSError as exc:
        raise TransportError(f"cannot run {executable}: {exc}", code="SPAWN_FAILED") from exc
    if proc.returncode != 0:
        reason = "killed by signal" if proc.returncode < 0 else f"exit status {proc.returncode}"
        raise TransportError(
            f"{executable} --api-info failed: {reason}",
            details={"returncode": proc.returncode, "stderr": proc.stderr.decode("utf-8", "replace")[-2000:]},
        )
    try:
        value = msgpack.unpackb(proc.stdout, raw=False, strict_map_key=False, unicode_errors="surrogateescape")
    except (ValueError, msgpack.exceptions.FormatError, msgpack.exceptions.StackError) as exc:
        raise ProtocolError(f"{executable} --api-info output is not msgpack: {exc}") from exc
    return parse_api_info(value)
