"""Msgpack-RPC envelope models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union


class MsgType(IntEnum):
    REQUEST = 0
    RESPONSE = 1
    NOTIFICATION = 2


@dataclass(slots=True)
class Request:
    """``[0, id, method, params]``"""

    id: int
    method: str
    params: list[Any] = field(default_factory=list)

    def to_wire(self) -> list[Any]:
        return [MsgType.REQUEST.value, self.id, self.method, list(self.params)]


@dataclass(slots=True)
class Response:
    """``[1, id, error, result]``; a non-nil error means the call failed."""

    id: int
    error: Any = None
    result: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_wire(self) -> list[Any]:
        return [MsgType.RESPONSE.value, self.id, self.error, self.result]


@dataclass(slots=True)
class Notification:
    """``[2, method, params]``"""

    method: str
    params: list[Any] = field(default_factory=list)

    def to_wire(self) -> list[Any]:
        return [MsgType.NOTIFICATION.value, self.method, list(self.params)]


Message = Union[Request, Response, Notification]
