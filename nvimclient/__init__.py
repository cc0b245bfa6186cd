"""nvimclient - msgpack-RPC session client for Nvim."""

__version__ = "0.1.0"
__logo__ = "▌▌"

from nvimclient.config import SessionConfig
from nvimclient.errors import (
    CallTimeoutError,
    ConnectionClosedError,
    InvalidMetadata,
    InvalidType,
    MissingType,
    NoTypeInformation,
    NotAMap,
    NvimClientError,
    ProtocolError,
    RpcError,
    SpawnError,
    SpawnReason,
    TransportError,
)
from nvimclient.metadata import Metadata
from nvimclient.rpc.correlator import PendingCall
from nvimclient.session import Session

__all__ = [
    "CallTimeoutError",
    "ConnectionClosedError",
    "InvalidMetadata",
    "InvalidType",
    "Metadata",
    "MissingType",
    "NoTypeInformation",
    "NotAMap",
    "NvimClientError",
    "PendingCall",
    "ProtocolError",
    "RpcError",
    "Session",
    "SessionConfig",
    "SpawnError",
    "SpawnReason",
    "TransportError",
]
