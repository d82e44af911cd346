"""Connection lifecycle: at most one connection, driven to ready or torn down.

Phases (see :class:`~bleak_peripheral_session.state.ConnectionPhase`)::

    idle ──connect──► attaching ──attached──► stabilizing ──settle──►
    discovering_attributes ──► reading_attribute ──► ready

    attaching ──timeout / rejected──► failed ──teardown──► idle
    any active ──peer dropped──► idle
    any ──disconnect()──► disconnecting ──teardown──► idle

Rules this module enforces:

- **One handle.**  ``connect()`` always releases the previous handle
  before the new attach request goes out, even when the previous
  teardown is still in flight.  An attach that is abandoned before its
  outcome is handled is waited for, and any handle it produced is
  detached first.
- **Own attach timeout.**  The attach timer runs independently of the
  transport's own timeout.  It is the only defence against attaches
  that silently hang.
- **No resurrection.**  Every attempt has a generation.  Outcomes,
  timer firings and disconnect callbacks from an older generation are
  dropped; a late ``Attached`` has its handle released on arrival.
- **Attribute access is best effort.**  If the attribute table or the
  battery read fails, the error is surfaced but the link stays up and
  the lifecycle still reaches ``ready``.
- **Teardown always finishes.**  Transport faults while detaching are
  recorded as ``last_error`` and the lifecycle still reaches ``idle``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from functools import partial
from typing import Any

from .const import (
    ATTACH_TIMEOUT_MESSAGE,
    BATTERY_LEVEL_UUID,
    BATTERY_SERVICE_UUID,
    SessionConfig,
    attach_status_reason,
)
from .errors import AttachRejected, AttachTimeout, ErrorKind, TransportError
from .events import (
    Attached,
    AttachFailed,
    AttachTimerFired,
    AttributeDiscoveryError,
    AttributeReadError,
    AttributesDiscovered,
    AttributeValueRead,
    ConnectRequested,
    DisconnectRequested,
    PeerDisconnected,
    Released,
    SettleElapsed,
)
from .machine import EventProcessor
from .state import ConnectionPhase, ConnectionState, PeerRecord, SessionStore
from .timers import PhaseTimer
from .transport import AttributeTable, Transport

_LOGGER = logging.getLogger(__name__)

TransitionListener = Callable[[ConnectionState, ConnectionState], None]


def has_battery_level(table: AttributeTable) -> bool:
    """Return whether *table* exposes Battery Level in the Battery Service."""
    for service_uuid, char_uuids in table.items():
        if service_uuid.lower() != BATTERY_SERVICE_UUID:
            continue
        return any(uuid.lower() == BATTERY_LEVEL_UUID for uuid in char_uuids)
    return False


def decode_battery_level(value: bytes) -> int:
    """Decode a Battery Level value (uint8 percentage) clamped to 0..100."""
    return min(value[0], 100)


class ConnectionLifecycle(EventProcessor):
    """Own the single transport connection and publish its progress.

    Parameters
    ----------
    transport:
        Radio transport used for attach, discovery, read and detach.
    store:
        Session store receiving ``connected``, ``connected_device_name``,
        ``battery_level`` and errors.
    config:
        Timing configuration (attach timeout, settle delay, detach
        ceiling).
    """

    def __init__(
        self,
        transport: Transport,
        store: SessionStore,
        *,
        config: SessionConfig | None = None,
    ) -> None:
        super().__init__("ConnectionLifecycle")
        self._transport = transport
        self._store = store
        self._config = config or SessionConfig()
        self._state = ConnectionState.idle()
        self._last_failure: ConnectionState | None = None
        self._peer: PeerRecord | None = None
        self._handle: Any = None
        self._io_task: asyncio.Task[Any] | None = None
        self._attach_task: asyncio.Task[Any] | None = None
        self._claimed_attaches: set[asyncio.Task[Any]] = set()
        self._release_task: asyncio.Task[Any] | None = None
        self._listeners: list[TransitionListener] = []
        self._attach_timer = PhaseTimer(
            "attach", lambda generation: self.post(AttachTimerFired(generation))
        )
        self._settle_timer = PhaseTimer(
            "settle", lambda generation: self.post(SettleElapsed(generation))
        )
        self._handlers = {
            ConnectRequested: self._on_connect,
            DisconnectRequested: self._on_disconnect,
            Attached: self._on_attached,
            AttachFailed: self._on_attach_failed,
            AttachTimerFired: self._on_attach_timer,
            SettleElapsed: self._on_settle_elapsed,
            AttributesDiscovered: self._on_attributes_discovered,
            AttributeDiscoveryError: self._on_attribute_discovery_error,
            AttributeValueRead: self._on_attribute_value_read,
            AttributeReadError: self._on_attribute_read_error,
            PeerDisconnected: self._on_peer_disconnected,
            Released: self._on_released,
        }

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_failure(self) -> ConnectionState | None:
        """The most recent ``failed`` state, kept after teardown to idle."""
        return self._last_failure

    @property
    def handle(self) -> Any:
        """The transport connection handle currently owned, if any."""
        return self._handle

    def add_listener(self, callback: TransitionListener) -> Callable[[], None]:
        """Call ``callback(old, new)`` on every state transition."""
        self._listeners.append(callback)

        def _remove() -> None:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass

        return _remove

    # ── Commands ──────────────────────────────────────────────────

    def connect(self, peer: PeerRecord) -> None:
        """Connect to *peer*, superseding any current connection."""
        self.post(ConnectRequested(peer))

    def disconnect(self) -> None:
        """Tear down the connection.  Safe in any state, and repeatable."""
        self.post(DisconnectRequested())

    async def close(self) -> None:
        """Disconnect and wait (bounded) for the handle to be released."""
        self.disconnect()
        release = self._release_task
        if release is not None and not release.done():
            await asyncio.wait([release], timeout=self._config.disconnect_timeout)
        self._abandon()
        self._cancel_tasks()

    # ── Handlers ──────────────────────────────────────────────────

    def _on_connect(self, event: ConnectRequested) -> None:
        peer = event.peer
        generation = self._next_generation()
        if self._state.is_active:
            _LOGGER.info(
                "%s: superseding connection to %s", peer.address, self._state.target
            )
        self._abandon()
        self._release_task = self._spawn_release(
            self._take_handle(), generation, self._take_attach()
        )
        self._peer = peer

        loop = asyncio.get_running_loop()
        self._transition(ConnectionState.attaching(peer.address, loop.time()))
        self._store.update(lambda s: s.cleared_error().disconnected())
        self._attach_timer.arm(self._config.attach_timeout, generation)
        _LOGGER.info("%s: connecting to %r", peer.address, peer.name)
        self._io_task = self._attach_task = self.spawn(
            self._attach(generation, peer, self._release_task),
            on_done=partial(self._attach_done, generation),
        )

    async def _attach(
        self,
        generation: int,
        peer: PeerRecord,
        release: asyncio.Task[Any] | None,
    ) -> Any:
        if release is not None and not release.done():
            await asyncio.wait([release])
        return await self._transport.attach(
            peer.handle, partial(self._disconnected_callback, generation)
        )

    def _attach_done(self, generation: int, task: asyncio.Task[Any]) -> None:
        if task is self._attach_task:
            self._attach_task = None
        if task in self._claimed_attaches:
            # Handed to a release, which detaches whatever it produced
            self._claimed_attaches.discard(task)
            return
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.post(AttachFailed(generation, exc))
        else:
            self.post(Attached(generation, task.result()))

    def _disconnected_callback(self, generation: int) -> None:
        self.post(PeerDisconnected(generation))

    def _on_attached(self, event: Attached) -> None:
        if not self._in_phase(event.generation, ConnectionPhase.ATTACHING):
            _LOGGER.debug(
                "Discarding late attach (generation %d), releasing its handle",
                event.generation,
            )
            self._spawn_release(event.handle, None)
            return
        self._attach_timer.cancel()
        self._handle = event.handle
        self._transition(self._state.advance(ConnectionPhase.STABILIZING))
        _LOGGER.info(
            "%s: attached, settling for %.1f s",
            self._state.target,
            self._config.settle_delay,
        )
        self._settle_timer.arm(self._config.settle_delay, event.generation)

    def _on_attach_failed(self, event: AttachFailed) -> None:
        if not self._in_phase(event.generation, ConnectionPhase.ATTACHING):
            return
        exc = event.error
        if isinstance(exc, AttachRejected):
            kind, reason = ErrorKind.ATTACH_REJECTED, attach_status_reason(exc.code)
        else:
            kind, reason = ErrorKind.TRANSPORT_ERROR, f"Connection error: {exc}"
        _LOGGER.warning("%s: attach failed: %s", self._state.target, reason)
        self._fail(kind, reason)

    def _on_attach_timer(self, event: AttachTimerFired) -> None:
        if not self._in_phase(event.generation, ConnectionPhase.ATTACHING):
            return
        _LOGGER.warning(
            "%s: no attach outcome after %.1f s, giving up",
            self._state.target,
            self._config.attach_timeout,
        )
        error = AttachTimeout(ATTACH_TIMEOUT_MESSAGE)
        self._fail(error.kind, str(error))

    def _on_settle_elapsed(self, event: SettleElapsed) -> None:
        if not self._in_phase(event.generation, ConnectionPhase.STABILIZING):
            return
        self._transition(self._state.advance(ConnectionPhase.DISCOVERING_ATTRIBUTES))
        self._io_task = self.spawn(
            self._transport.discover_attributes(self._handle),
            on_done=partial(
                self._io_done,
                event.generation,
                AttributesDiscovered,
                AttributeDiscoveryError,
            ),
        )

    def _on_attributes_discovered(self, event: AttributesDiscovered) -> None:
        if not self._in_phase(
            event.generation, ConnectionPhase.DISCOVERING_ATTRIBUTES
        ):
            return
        if not has_battery_level(event.table):
            _LOGGER.info("%s: no battery level attribute", self._state.target)
            self._become_ready()
            return
        self._transition(self._state.advance(ConnectionPhase.READING_ATTRIBUTE))
        self._io_task = self.spawn(
            self._transport.read_attribute(self._handle, BATTERY_LEVEL_UUID),
            on_done=partial(
                self._io_done,
                event.generation,
                AttributeValueRead,
                AttributeReadError,
            ),
        )

    def _on_attribute_discovery_error(self, event: AttributeDiscoveryError) -> None:
        if not self._in_phase(
            event.generation, ConnectionPhase.DISCOVERING_ATTRIBUTES
        ):
            return
        reason = f"Failed to discover services: {event.error}"
        _LOGGER.warning("%s: %s", self._state.target, reason)
        self._store.update(
            lambda s: s.with_error(ErrorKind.ATTRIBUTE_DISCOVERY_FAILED, reason)
        )
        # The link itself is fine; stay connected without a battery value
        self._transition(ConnectionState.failed(reason, self._state.target))
        self._become_ready()

    def _on_attribute_value_read(self, event: AttributeValueRead) -> None:
        if not self._in_phase(event.generation, ConnectionPhase.READING_ATTRIBUTE):
            return
        if not event.value:
            self._on_attribute_read_error(
                AttributeReadError(event.generation, ValueError("empty value"))
            )
            return
        level = decode_battery_level(event.value)
        _LOGGER.debug("%s: battery level %d%%", self._state.target, level)
        self._become_ready(battery_level=level)

    def _on_attribute_read_error(self, event: AttributeReadError) -> None:
        if not self._in_phase(event.generation, ConnectionPhase.READING_ATTRIBUTE):
            return
        reason = f"Failed to read battery level: {event.error}"
        _LOGGER.warning("%s: %s", self._state.target, reason)
        self._store.update(
            lambda s: s.with_error(ErrorKind.ATTRIBUTE_READ_FAILED, reason)
        )
        self._become_ready()

    def _on_peer_disconnected(self, event: PeerDisconnected) -> None:
        if not self._is_current(event.generation) or not self._state.is_active:
            return
        _LOGGER.info("%s: peer disconnected", self._state.target)
        generation = self._next_generation()
        self._abandon()
        self._release_task = self._spawn_release(
            self._take_handle(), generation, self._take_attach()
        )
        self._transition(ConnectionState.idle())
        self._store.update(lambda s: s.disconnected())

    def _on_disconnect(self, event: DisconnectRequested) -> None:
        generation = self._next_generation()
        self._abandon()
        handle = self._take_handle()
        attach = self._take_attach()
        if (
            self._state.phase is ConnectionPhase.IDLE
            and handle is None
            and attach is None
        ):
            self._store.update(lambda s: s.disconnected())
            return
        _LOGGER.info("%s: disconnecting", self._state.target)
        self._transition(self._state.advance(ConnectionPhase.DISCONNECTING))
        self._store.update(lambda s: s.disconnected())
        self._release_task = self._spawn_release(handle, generation, attach)

    def _on_released(self, event: Released) -> None:
        if event.error is not None:
            message = f"Error closing connection: {event.error}"
            self._store.update(
                lambda s: s.with_error(ErrorKind.TRANSPORT_ERROR, message)
            )
        if self._is_current(event.generation) and self._state.phase in (
            ConnectionPhase.DISCONNECTING,
            ConnectionPhase.FAILED,
        ):
            self._transition(ConnectionState.idle())

    # ── Internals ─────────────────────────────────────────────────

    def _in_phase(self, generation: int, phase: ConnectionPhase) -> bool:
        return self._is_current(generation) and self._state.phase is phase

    def _transition(self, new: ConnectionState) -> None:
        old = self._state
        self._state = new
        if new.phase is ConnectionPhase.FAILED:
            self._last_failure = new
        _LOGGER.debug("Connection state: %s → %s", old.phase.value, new.phase.value)
        for callback in list(self._listeners):
            try:
                callback(old, new)
            except Exception:
                _LOGGER.exception("ConnectionLifecycle: transition listener failed")

    def _become_ready(self, battery_level: int | None = None) -> None:
        name = self._peer.name if self._peer is not None else ""
        self._transition(ConnectionState.ready(self._state.target or "", name))

        def _apply(s):
            s = replace(s, connected=True, connected_device_name=name)
            if battery_level is not None:
                s = replace(s, battery_level=battery_level)
            return s

        self._store.update(_apply)
        _LOGGER.info("%s: ready (%r)", self._state.target, name)

    def _fail(self, kind: ErrorKind, reason: str) -> None:
        generation = self._next_generation()
        self._abandon()
        self._release_task = self._spawn_release(
            self._take_handle(), generation, self._take_attach()
        )
        self._transition(ConnectionState.failed(reason, self._state.target))
        self._store.update(lambda s: s.disconnected().with_error(kind, reason))

    def _abandon(self) -> None:
        """Cancel timers and in-flight I/O of the current attempt."""
        self._attach_timer.cancel()
        self._settle_timer.cancel()
        if self._io_task is not None and not self._io_task.done():
            self._io_task.cancel()
        self._io_task = None

    def _take_handle(self) -> Any:
        handle, self._handle = self._handle, None
        return handle

    def _take_attach(self) -> asyncio.Task[Any] | None:
        """Hand an attach whose outcome has not been reported to teardown.

        The attach may already hold a live handle (it returned, or it
        ignored cancellation), so the release waits for it and detaches
        that handle before anything else attaches.
        """
        task, self._attach_task = self._attach_task, None
        if task is not None:
            self._claimed_attaches.add(task)
        return task

    def _io_done(
        self,
        generation: int,
        success: type,
        failure: type,
        task: asyncio.Task[Any],
    ) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.post(failure(generation, exc))
        else:
            self.post(success(generation, task.result()))

    def _spawn_release(
        self,
        handle: Any,
        generation: int | None,
        attach: asyncio.Task[Any] | None = None,
    ) -> asyncio.Task[Any]:
        """Release *handle* after any release already in flight.

        *attach* is an abandoned attach task; whatever handle it ends up
        producing is detached too.  With a *generation*, completion is
        reported as :class:`Released`.  Without one (stale handles)
        failures are only logged.
        """
        on_done = None
        if generation is not None:
            on_done = partial(self._release_done, generation)
        task = self.spawn(
            self._release(handle, attach, self._release_task), on_done=on_done
        )
        if generation is None:
            self._release_task = task
        return task

    async def _release(
        self,
        handle: Any,
        attach: asyncio.Task[Any] | None,
        previous: asyncio.Task[Any] | None,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        if attach is not None:
            if not attach.done():
                await asyncio.wait([attach])
            if not attach.cancelled() and attach.exception() is None:
                _LOGGER.debug("Detaching handle of an abandoned attach")
                await self._detach(attach.result())
        if handle is not None:
            await self._detach(handle)

    async def _detach(self, handle: Any) -> None:
        try:
            await asyncio.wait_for(
                self._transport.detach(handle),
                timeout=self._config.disconnect_timeout,
            )
        except asyncio.TimeoutError:
            raise TransportError(
                f"detach timed out after {self._config.disconnect_timeout:.1f} s"
            ) from None

    def _release_done(self, generation: int, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.debug("detach failed", exc_info=exc)
        self.post(Released(generation, exc))
