"""Command surface for the presentation layer.

:class:`PeripheralSession` wires a :class:`DiscoverySession` and a
:class:`ConnectionLifecycle` to one :class:`SessionStore` and checks the
permission gate before either of them touches the radio.

Usage::

    async with PeripheralSession() as session:
        session.subscribe(render)
        await session.start_scan()
        ...
        await session.select_peer("AA:BB:CC:DD:EE:FF")
        ...
        session.disconnect()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable

from .const import SessionConfig
from .discovery import DiscoverySession
from .errors import AlreadyScanning, ErrorKind, PermissionDenied
from .lifecycle import ConnectionLifecycle
from .naming import NameResolver
from .state import ConnectionState, SessionState, SessionStore
from .transport import AccessGate, AlwaysGranted, Transport

_LOGGER = logging.getLogger(__name__)


class PeripheralSession:
    """Discovery plus a single connection, published as snapshots.

    Parameters
    ----------
    transport:
        Radio transport.  Defaults to
        :class:`~bleak_peripheral_session.bleak_transport.BleakTransport`.
    access:
        Permission gate consulted before scanning or connecting.
    config:
        Timing configuration shared by both state machines.
    resolver:
        Display-name strategy for discovered peers.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        access: AccessGate | None = None,
        config: SessionConfig | None = None,
        resolver: NameResolver | None = None,
    ) -> None:
        if transport is None:
            from .bleak_transport import BleakTransport

            transport = BleakTransport()
        config = config or SessionConfig()
        self._access = access or AlwaysGranted()
        self._store = SessionStore()
        self._discovery = DiscoverySession(
            transport, self._store, config=config, resolver=resolver
        )
        self._lifecycle = ConnectionLifecycle(transport, self._store, config=config)

    async def __aenter__(self) -> PeripheralSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def snapshot(self) -> SessionState:
        return self._store.snapshot

    @property
    def connection_state(self) -> ConnectionState:
        return self._lifecycle.state

    @property
    def discovery(self) -> DiscoverySession:
        return self._discovery

    @property
    def lifecycle(self) -> ConnectionLifecycle:
        return self._lifecycle

    def subscribe(self, callback: Callable[[SessionState], None]) -> Callable[[], None]:
        return self._store.subscribe(callback)

    def stream(self) -> AsyncIterator[SessionState]:
        return self._store.stream()

    async def start_scan(self) -> bool:
        """Start a discovery session.

        Returns ``False`` when access is denied or a scan is already
        running.
        """
        if not await self._ensure_access():
            return False
        try:
            self._discovery.start()
        except AlreadyScanning:
            _LOGGER.debug("start_scan ignored, already scanning")
            return False
        return True

    def stop_scan(self) -> None:
        self._discovery.stop()

    async def select_peer(self, identity: str) -> bool:
        """Connect to the discovered peer with address *identity*.

        An active scan is stopped first.  Returns ``False`` if the peer
        is unknown or access is denied.
        """
        peer = self._store.snapshot.find_peer(identity)
        if peer is None:
            message = f"Unknown device: {identity}"
            self._store.update(lambda s: s.with_error(ErrorKind.UNKNOWN_PEER, message))
            return False
        if not await self._ensure_access():
            return False
        self._discovery.stop()
        self._lifecycle.connect(peer)
        return True

    def disconnect(self) -> None:
        self._lifecycle.disconnect()

    def clear_error(self) -> None:
        self._store.update(lambda s: s.cleared_error())

    async def close(self) -> None:
        """Stop scanning, disconnect and release every timer and handle."""
        await self._discovery.close()
        await self._lifecycle.close()

    async def _ensure_access(self) -> bool:
        if self._access.has_required_access():
            return True
        try:
            granted = await self._access.request_access()
        except Exception:
            _LOGGER.debug("request_access raised, treating as denied", exc_info=True)
            granted = False
        if not granted:
            error = PermissionDenied()
            self._store.update(lambda s: s.with_error(error.kind, str(error)))
            _LOGGER.warning("Bluetooth access denied")
        return granted
