"""Contracts for the collaborators the core depends on.

The core never talks to a radio directly.  It drives a :class:`Transport`
and asks an :class:`AccessGate` before the first radio call.
:mod:`bleak_peripheral_session.bleak_transport` provides a bleak-backed
transport; tests use an in-memory fake.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Mapping
from typing import Any, Protocol

# (handle, advertised_name, address, rssi)
PeerObservedCallback = Callable[[Any, "str | None", str, int], None]
ScanFailedCallback = Callable[[int], None]
DisconnectedCallback = Callable[[], None]

# service uuid -> characteristic uuids, all lower-case 128-bit strings
AttributeTable = Mapping[str, Collection[str]]


class Transport(Protocol):
    """Primitive radio operations.

    Each coroutine may fail independently.  Callbacks may be invoked from
    any thread.
    """

    async def begin_discovery(
        self,
        on_peer_observed: PeerObservedCallback,
        on_scan_failed: ScanFailedCallback,
    ) -> None:
        """Start an unfiltered scan.

        Raises ``ScanUnavailable`` when there is no usable radio and
        ``TransportError`` for any other start failure.
        """

    async def end_discovery(self) -> None:
        """Stop the scan.  Raises ``TransportError`` if none is running."""

    async def attach(
        self, peer_handle: Any, on_disconnected: DisconnectedCallback
    ) -> Any:
        """Connect to a peer and return a connection handle.

        Raises ``AttachRejected(status)`` when the stack refuses.
        *on_disconnected* fires if the link later drops.
        """

    async def detach(self, connection_handle: Any) -> None:
        """Close a connection.  Idempotent and best effort."""

    async def discover_attributes(self, connection_handle: Any) -> AttributeTable:
        """Enumerate the peer's services and their characteristics."""

    async def read_attribute(
        self, connection_handle: Any, attribute_id: str
    ) -> bytes:
        """Read one characteristic value."""


class AccessGate(Protocol):
    """Permission layer that gates radio access."""

    def has_required_access(self) -> bool: ...

    async def request_access(self) -> bool: ...


class AlwaysGranted:
    """Access gate for hosts with no runtime permission model."""

    def has_required_access(self) -> bool:
        return True

    async def request_access(self) -> bool:
        return True
