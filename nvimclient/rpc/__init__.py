"""Msgpack-RPC envelopes, codec and call correlation."""

from nvimclient.rpc.codec import MessageDecoder, decode, encode
from nvimclient.rpc.correlator import CallCorrelator, CorrelatorStats, PendingCall
from nvimclient.rpc.protocol import Message, MsgType, Notification, Request, Response

__all__ = [
    "CallCorrelator",
    "CorrelatorStats",
    "Message",
    "MessageDecoder",
    "MsgType",
    "Notification",
    "PendingCall",
    "Request",
    "Response",
    "decode",
    "encode",
]
