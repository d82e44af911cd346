"""Immutable session snapshots and the store that publishes them.

:class:`SessionState` is what the presentation layer sees.  It is never
mutated in place: writers produce a new snapshot from the old one with
:meth:`SessionStore.update`, which swaps it in with compare-and-set
semantics and then notifies subscribers.  A reader therefore never
observes a half-applied change.

:class:`ConnectionState` is the lifecycle's own state.  It is owned by
:class:`~bleak_peripheral_session.lifecycle.ConnectionLifecycle`; the
store only ever sees its projection (``connected``,
``connected_device_name``, ``battery_level``).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .errors import ErrorKind

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeerRecord:
    """A discovered peripheral.

    *handle* is borrowed from the transport and passed back to it
    unchanged on attach.  *address* is the identity used for dedup.
    """

    handle: Any = field(compare=False, repr=False)
    name: str
    address: str
    rssi: int


class ConnectionPhase(str, Enum):
    """Phases of the connection lifecycle."""

    IDLE = "idle"
    ATTACHING = "attaching"
    STABILIZING = "stabilizing"
    DISCOVERING_ATTRIBUTES = "discovering_attributes"
    READING_ATTRIBUTE = "reading_attribute"
    READY = "ready"
    FAILED = "failed"
    DISCONNECTING = "disconnecting"


# Phases in which the lifecycle owns (or is acquiring) a transport handle
ACTIVE_PHASES = frozenset(
    {
        ConnectionPhase.ATTACHING,
        ConnectionPhase.STABILIZING,
        ConnectionPhase.DISCOVERING_ATTRIBUTES,
        ConnectionPhase.READING_ATTRIBUTE,
        ConnectionPhase.READY,
    }
)


@dataclass(frozen=True)
class ConnectionState:
    """Current lifecycle phase plus the payload that phase carries.

    ``target`` is the address of the peer the attempt is for.
    ``started_at`` (loop time) is set while attaching, ``peer_name``
    once ready and ``reason`` when failed.
    """

    phase: ConnectionPhase = ConnectionPhase.IDLE
    target: str | None = None
    started_at: float | None = None
    peer_name: str | None = None
    reason: str | None = None

    @classmethod
    def idle(cls) -> ConnectionState:
        return cls()

    @classmethod
    def attaching(cls, target: str, started_at: float) -> ConnectionState:
        return cls(ConnectionPhase.ATTACHING, target=target, started_at=started_at)

    @classmethod
    def failed(cls, reason: str, target: str | None = None) -> ConnectionState:
        return cls(ConnectionPhase.FAILED, target=target, reason=reason)

    @classmethod
    def ready(cls, target: str, peer_name: str) -> ConnectionState:
        return cls(ConnectionPhase.READY, target=target, peer_name=peer_name)

    def advance(self, phase: ConnectionPhase) -> ConnectionState:
        """Move to *phase*, keeping the target and dropping other payload."""
        return ConnectionState(phase, target=self.target)

    @property
    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES


@dataclass(frozen=True)
class SessionState:
    """Snapshot consumed by the presentation layer.

    ``connected`` is true exactly while the lifecycle is ready.
    ``discovered`` is in first-seen order, unique by address, and only
    changes while ``scanning`` is true (it is emptied when a new scan
    starts).  ``error_kind`` names the kind of ``last_error``.
    """

    scanning: bool = False
    connected: bool = False
    battery_level: int = 0
    connected_device_name: str = ""
    last_error: str | None = None
    error_kind: ErrorKind | None = None
    discovered: tuple[PeerRecord, ...] = ()

    def find_peer(self, address: str) -> PeerRecord | None:
        for peer in self.discovered:
            if peer.address == address:
                return peer
        return None

    def with_peer(self, peer: PeerRecord) -> SessionState:
        """Append *peer* unless its address is already known."""
        if self.find_peer(peer.address) is not None:
            return self
        return replace(self, discovered=self.discovered + (peer,))

    def with_error(self, kind: ErrorKind, message: str) -> SessionState:
        """Record an error for display.

        An uncleared error of the same kind is left in place, so the
        user sees each kind once until they dismiss it.
        """
        if self.last_error is not None and self.error_kind == kind:
            return self
        return replace(self, last_error=message, error_kind=kind)

    def cleared_error(self) -> SessionState:
        if self.last_error is None and self.error_kind is None:
            return self
        return replace(self, last_error=None, error_kind=None)

    def disconnected(self) -> SessionState:
        """Drop every connection-derived field."""
        return replace(
            self, connected=False, connected_device_name="", battery_level=0
        )


Subscriber = Callable[[SessionState], None]


class SessionStore:
    """Single source of truth for :class:`SessionState`.

    Writers call :meth:`update` with a pure function of the old snapshot.
    The swap itself is a compare-and-set; if another writer got in
    between (for example a subscriber that updated the store while being
    notified) the function is re-applied to the newer snapshot.

    Readers either poll :attr:`snapshot`, register a callback with
    :meth:`subscribe`, or iterate :meth:`stream`.
    """

    def __init__(self, initial: SessionState | None = None) -> None:
        self._state = initial if initial is not None else SessionState()
        self._swap_lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    @property
    def snapshot(self) -> SessionState:
        return self._state

    def compare_and_set(self, expected: SessionState, new: SessionState) -> bool:
        """Install *new* if the current snapshot is still *expected*."""
        with self._swap_lock:
            if self._state is not expected:
                return False
            if new == expected:
                return True
            self._state = new
        self._publish(new)
        return True

    def update(self, fn: Callable[[SessionState], SessionState]) -> SessionState:
        """Apply *fn* to the current snapshot and publish the result."""
        while True:
            current = self._state
            new = fn(current)
            if self.compare_and_set(current, new):
                return new

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call *callback* with every new snapshot.

        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    async def stream(self) -> AsyncIterator[SessionState]:
        """Yield the current snapshot, then each newer one.

        Conflated: a slow consumer skips intermediate snapshots and only
        sees the latest.
        """
        changed = asyncio.Event()
        unsubscribe = self.subscribe(lambda _state: changed.set())
        try:
            last = self._state
            yield last
            while True:
                await changed.wait()
                changed.clear()
                current = self._state
                if current is not last:
                    last = current
                    yield current
        finally:
            unsubscribe()

    def _publish(self, state: SessionState) -> None:
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception:
                _LOGGER.exception("SessionStore: subscriber callback failed")
