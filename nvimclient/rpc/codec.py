"""Msgpack encoding of envelopes, plus a streaming decoder for the reader loop."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import msgpack

from nvimclient.errors import ProtocolError
from nvimclient.rpc.protocol import Message, MsgType, Notification, Request, Response

# msgpack's own default limit for a single buffered envelope.
MAX_BUFFER_SIZE = 100 * 1024 * 1024

_UNPACK_ERRORS = (
    msgpack.exceptions.ExtraData,
    msgpack.exceptions.FormatError,
    msgpack.exceptions.StackError,
    msgpack.exceptions.BufferFull,
    ValueError,
    TypeError,
)


def encode(message: Message) -> bytes:
    """Encode one envelope; raises ``TypeError`` for values msgpack cannot pack."""
    return msgpack.packb(message.to_wire(), use_bin_type=True)


def decode(data: bytes) -> Message:
    """Decode exactly one envelope from ``data``."""
    try:
        raw = msgpack.unpackb(data, raw=False, strict_map_key=False, unicode_errors="surrogateescape")
    except _UNPACK_ERRORS as exc:
        raise ProtocolError(f"undecodable envelope: {exc}") from exc
    return to_message(raw)


def to_message(raw: Any) -> Message:
    """Validate an unpacked value against the three envelope shapes."""
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ProtocolError("envelope is not an array", details={"envelope": repr(raw)[:200]})
    kind = raw[0]
    if kind == MsgType.REQUEST and len(raw) == 4:
        _, msg_id, method, params = raw
        return Request(id=_require_id(msg_id), method=_require_method(method), params=_require_params(params))
    if kind == MsgType.RESPONSE and len(raw) == 4:
        _, msg_id, error, result = raw
        return Response(id=_require_id(msg_id), error=error, result=result)
    if kind == MsgType.NOTIFICATION and len(raw) == 3:
        _, method, params = raw
        return Notification(method=_require_method(method), params=_require_params(params))
    raise ProtocolError(
        f"unrecognized envelope (type {kind!r}, {len(raw)} elements)",
        details={"envelope": repr(raw)[:200]},
    )


def _require_id(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ProtocolError(f"invalid message id {value!r}")
    return value


def _require_method(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        raise ProtocolError(f"invalid method name {value!r}")
    return value


def _require_params(value: Any) -> list[Any]:
    if not isinstance(value, (list, tuple)):
        raise ProtocolError(f"params must be an array, got {type(value).__name__}")
    return list(value)


class MessageDecoder:
    """Incremental decoder: feed raw chunks, iterate complete envelopes."""

    def __init__(self, max_buffer_size: int = MAX_BUFFER_SIZE) -> None:
        # Nvim sends buffer text as msgpack str whether or not it is valid UTF-8.
        self._unpacker = msgpack.Unpacker(
            raw=False,
            strict_map_key=False,
            unicode_errors="surrogateescape",
            max_buffer_size=max_buffer_size,
        )
        self._max_buffer_size = max_buffer_size

    def feed(self, data: bytes) -> None:
        try:
            self._unpacker.feed(data)
        except msgpack.exceptions.BufferFull as exc:
            raise ProtocolError(f"envelope exceeds the {self._max_buffer_size} byte buffer") from exc

    def __iter__(self) -> Iterator[Message]:
        while True:
            try:
                raw = next(self._unpacker)
            except StopIteration:
                return
            except _UNPACK_ERRORS as exc:
                raise ProtocolError(f"undecodable envelope: {exc}") from exc
            yield to_message(raw)
