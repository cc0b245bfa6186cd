"""Handshake metadata: the peer-assigned extension type ids."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

from nvimclient.errors import InvalidType, MissingType, NoTypeInformation, NotAMap

REQUIRED_TYPES = ("Buffer", "Window", "Tabpage")


@dataclass(frozen=True, slots=True)
class Metadata:
    """Msgpack extension type codes the peer uses for its handle types."""

    buffer_id: int
    window_id: int
    tabpage_id: int

    @classmethod
    def from_capabilities(cls, value: Any) -> Metadata:
        """Validate a capability map and extract the three type ids.

        Checks run in a fixed order: the value must be a map, it must have
        ``types``, then ``Buffer``, ``Window`` and ``Tabpage`` must each be a
        map with an integer ``id``. The first failure is raised.
        """
        if not isinstance(value, Mapping):
            raise NotAMap()
        types = value.get("types")
        if not isinstance(types, Mapping):
            raise NoTypeInformation()
        ids = [_type_id(types, name) for name in REQUIRED_TYPES]
        return cls(buffer_id=ids[0], window_id=ids[1], tabpage_id=ids[2])

    def to_dict(self) -> dict[str, int]:
        return {"buffer_id": self.buffer_id, "window_id": self.window_id, "tabpage_id": self.tabpage_id}


def _type_id(types: Mapping[Any, Any], name: str) -> int:
    entry = types.get(name)
    if not isinstance(entry, Mapping):
        raise MissingType(name)
    type_id = entry.get("id")
    if isinstance(type_id, bool) or not isinstance(type_id, int):
        raise InvalidType(name)
    return type_id


def split_handshake_result(result: Any) -> tuple[int | None, Any]:
    """Split ``[channel_id, capabilities]``; a malformed result has no capability map."""
    if not isinstance(result, (list, tuple)) or len(result) != 2:
        raise NotAMap()
    channel_id, capabilities = result
    if isinstance(channel_id, bool) or not isinstance(channel_id, int):
        channel_id = None
    return channel_id, capabilities


@dataclass(frozen=True, slots=True)
class Handshake:
    channel_id: int | None
    capabilities: Mapping[str, Any]
    metadata: Metadata


def resolve(call_sync: Callable[[str, list[Any]], Any], method: str) -> Handshake:
    """Run the handshake call through ``call_sync`` and validate its result."""
    channel_id, capabilities = split_handshake_result(call_sync(method, []))
    metadata = Metadata.from_capabilities(capabilities)
    logger.debug("Handshake via {}: channel {}, {}", method, channel_id, metadata)
    return Handshake(channel_id=channel_id, capabilities=capabilities, metadata=metadata)
