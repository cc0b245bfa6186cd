"""Session: one connection to an Nvim peer, ready for calls once constructed."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from loguru import logger

from nvimclient import metadata as metadata_resolver
from nvimclient import transport as transports
from nvimclient.api_info import ApiInfo, parse_api_info
from nvimclient.config import SessionConfig, load_config
from nvimclient.errors import NvimClientError
from nvimclient.metadata import Metadata
from nvimclient.rpc.correlator import CallCorrelator, CorrelatorStats, PendingCall
from nvimclient.rpc.protocol import Notification
from nvimclient.transport import Transport

# Default for Session.call_sync: use the configured call timeout.
CONFIGURED_TIMEOUT = object()


class Session:
    """A live session whose handshake has already succeeded.

    Build one with :meth:`new_tcp`, :meth:`new_stdio` or :meth:`new_child`.
    The constructor owns ``transport`` from the moment it is called: if the
    handshake fails, the transport is closed before the error propagates.
    """

    def __init__(self, transport: Transport, config: SessionConfig | None = None):
        self.config = config or load_config()
        self.transport = transport
        self._correlator = CallCorrelator(transport, notification_queue_size=self.config.notification_queue_size)
        try:
            self._correlator.start()
            handshake = metadata_resolver.resolve(self._handshake_call, self.config.handshake_method)
        except BaseException:
            self._correlator.close("handshake failed")
            raise
        self._metadata = handshake.metadata
        self._capabilities = handshake.capabilities
        self.channel_id = handshake.channel_id
        self._api_info: ApiInfo | None = None
        logger.debug("Session ready on {} (channel {})", transport.description, self.channel_id)

    def _handshake_call(self, method: str, params: list[Any]) -> Any:
        return self._correlator.call_sync(method, params, timeout=self.config.handshake_timeout)

    @classmethod
    def new_tcp(cls, address: str | tuple[str, int], config: SessionConfig | None = None) -> Session:
        """Connect to ``host:port`` and perform the handshake."""
        config = config or load_config()
        return cls(transports.connect_tcp(address), config)

    @classmethod
    def new_stdio(cls, config: SessionConfig | None = None) -> Session:
        """Talk to the peer over this process's stdin/stdout."""
        config = config or load_config()
        return cls(transports.from_standard_io(), config)

    @classmethod
    def new_child(cls, args: Sequence[str] = (), config: SessionConfig | None = None) -> Session:
        """Spawn ``nvim_bin`` with ``args`` plus the embed flag and talk over its pipes."""
        config = config or load_config()
        transport = transports.spawn_child(
            config.nvim_bin,
            [*args, config.embed_flag],
            shutdown_timeout=config.child_shutdown_timeout,
        )
        return cls(transport, config)

    @classmethod
    def new_socket(cls, path: str, config: SessionConfig | None = None) -> Session:
        """Connect over a Unix domain socket.

        Not available yet: start the peer with ``--listen host:port`` and use
        :meth:`new_tcp` instead.
        """
        raise NotImplementedError(f"Unix domain socket sessions are not supported yet (requested {path!r})")

    def metadata(self) -> Metadata:
        return self._metadata

    def api_info(self) -> ApiInfo:
        """Function list from the handshake's capability map, parsed on first use."""
        if self._api_info is None:
            self._api_info = parse_api_info(dict(self._capabilities))
        return self._api_info

    def call(self, method: str, params: Sequence[Any] = ()) -> PendingCall:
        return self._correlator.call(method, params)

    def call_sync(
        self,
        method: str,
        params: Sequence[Any] = (),
        timeout: float | None | object = CONFIGURED_TIMEOUT,
    ) -> Any:
        """Call ``method`` and block for its result.

        ``timeout`` defaults to ``config.call_timeout``. An explicit ``None`` waits
        until the response arrives or the connection closes.
        """
        if timeout is CONFIGURED_TIMEOUT:
            timeout = self.config.call_timeout
        return self._correlator.call_sync(method, params, timeout=timeout)

    def notify(self, method: str, params: Sequence[Any] = ()) -> None:
        self._correlator.notify(method, params)

    def next_notification(self, timeout: float | None = None) -> Notification | None:
        return self._correlator.next_notification(timeout=timeout)

    @property
    def stats(self) -> CorrelatorStats:
        return self._correlator.stats

    @property
    def closed(self) -> bool:
        return self._correlator.closed

    def close(self) -> None:
        self._correlator.close()

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __del__(self) -> None:
        correlator = getattr(self, "_correlator", None)
        if correlator is None or correlator.transport.closed:
            return
        try:
            correlator.close("session garbage collected")
        except NvimClientError as exc:
            logger.debug("Closing abandoned session failed: {}", exc)
