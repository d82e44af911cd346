"""Discovery session: one bounded, unfiltered scan at a time.

Lifecycle of a session::

    start() ──► scanning ──► stop() / scan period elapsed ──► idle
                    │
                    └──► transport reports scan_failed(code) ──► idle + error

The scan is deliberately not filtered by advertised service UUID.  A
lot of peripherals leave standard service data out of their
advertisements, and filtering would hide them.

Every scan gets a new generation.  Peer callbacks, the begin outcome
and the scan-period timer are all bound to the generation that started
them, so nothing from a finished scan can leak into the next one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from functools import partial
from typing import Any

from .const import SessionConfig
from .errors import AlreadyScanning, ErrorKind, PeripheralSessionError, ScanFailed
from .events import (
    PeerObserved,
    ScanAborted,
    ScanStartFailed,
    ScanStopFailed,
    ScanTimerFired,
    StartScan,
    StopScan,
)
from .machine import EventProcessor
from .naming import NameResolver
from .state import PeerRecord, SessionStore
from .timers import PhaseTimer
from .transport import Transport

_LOGGER = logging.getLogger(__name__)


class DiscoverySession(EventProcessor):
    """Own the single scan registration and publish what it finds.

    Parameters
    ----------
    transport:
        Radio transport used to begin and end discovery.
    store:
        Session store receiving ``scanning``, ``discovered`` and errors.
    config:
        Timing configuration; only ``scan_period`` and
        ``disconnect_timeout`` are used here.
    resolver:
        Display-name strategy for peers that advertise without a name.
    """

    def __init__(
        self,
        transport: Transport,
        store: SessionStore,
        *,
        config: SessionConfig | None = None,
        resolver: NameResolver | None = None,
    ) -> None:
        super().__init__("DiscoverySession")
        self._transport = transport
        self._store = store
        self._config = config or SessionConfig()
        self._resolver = resolver or NameResolver()
        self._scanning = False
        self._begin_task: asyncio.Task[Any] | None = None
        self._stop_task: asyncio.Task[Any] | None = None
        self._scan_timer = PhaseTimer(
            "scan", lambda generation: self.post(ScanTimerFired(generation))
        )
        self._handlers = {
            StartScan: self._on_start,
            StopScan: self._on_stop,
            PeerObserved: self._on_peer_observed,
            ScanAborted: self._on_scan_aborted,
            ScanStartFailed: self._on_scan_start_failed,
            ScanStopFailed: self._on_scan_stop_failed,
            ScanTimerFired: self._on_scan_timer,
        }

    @property
    def scanning(self) -> bool:
        return self._scanning

    # ── Commands ──────────────────────────────────────────────────

    def start(self) -> None:
        """Begin a new discovery session.

        Raises
        ------
        AlreadyScanning
            If a session is already active.
        """
        if self._scanning:
            raise AlreadyScanning()
        self.post(StartScan())

    def stop(self) -> None:
        """End the active session.  A no-op when nothing is scanning."""
        self.post(StopScan())

    async def close(self) -> None:
        """Stop scanning and wait (bounded) for the scan to be released."""
        self.stop()
        if self._stop_task is not None and not self._stop_task.done():
            await asyncio.wait(
                [self._stop_task], timeout=self._config.disconnect_timeout
            )
        self._scan_timer.cancel()
        self._cancel_tasks()

    # ── Transport callbacks (any thread) ──────────────────────────

    def _peer_callback(
        self,
        generation: int,
        handle: Any,
        name: str | None,
        address: str,
        rssi: int,
    ) -> None:
        if not isinstance(address, str) or not address.strip():
            _LOGGER.debug("Dropping advertisement without address: %r", handle)
            return
        if isinstance(rssi, bool) or not isinstance(rssi, int):
            _LOGGER.debug("%s: dropping advertisement with rssi %r", address, rssi)
            return
        if name is not None and not isinstance(name, str):
            name = None
        self.post(PeerObserved(generation, handle, name, address, rssi))

    def _scan_failed_callback(self, generation: int, code: int) -> None:
        self.post(ScanAborted(generation, code))

    # ── Handlers ──────────────────────────────────────────────────

    def _on_start(self, event: StartScan) -> None:
        if self._scanning:
            _LOGGER.debug("Scan already active, ignoring start")
            return
        generation = self._next_generation()
        self._scanning = True
        self._store.update(
            lambda s: replace(s.cleared_error(), scanning=True, discovered=())
        )
        self._scan_timer.arm(self._config.scan_period, generation)
        _LOGGER.debug(
            "Starting scan (generation %d, period %.1f s)",
            generation,
            self._config.scan_period,
        )
        self._begin_task = self.spawn(
            self._begin(generation, self._stop_task),
            on_done=partial(self._begin_done, generation),
        )

    async def _begin(
        self, generation: int, previous_stop: asyncio.Task[Any] | None
    ) -> None:
        if previous_stop is not None and not previous_stop.done():
            await asyncio.wait([previous_stop])
        await self._transport.begin_discovery(
            partial(self._peer_callback, generation),
            partial(self._scan_failed_callback, generation),
        )

    def _begin_done(self, generation: int, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.post(ScanStartFailed(generation, exc))

    def _on_peer_observed(self, event: PeerObserved) -> None:
        if not self._scanning or not self._is_current(event.generation):
            return
        if self._store.snapshot.find_peer(event.address) is not None:
            return
        peer = PeerRecord(
            handle=event.handle,
            name=self._resolver(event.name, event.address),
            address=event.address,
            rssi=event.rssi,
        )
        self._store.update(lambda s: s.with_peer(peer))
        _LOGGER.debug(
            "%s: discovered %r (rssi %d)", peer.address, peer.name, peer.rssi
        )

    def _on_scan_aborted(self, event: ScanAborted) -> None:
        if not self._scanning or not self._is_current(event.generation):
            return
        _LOGGER.warning("Scan failed with code %d", event.code)
        # The transport has already given up on this scan
        self._halt(release=False)
        error = ScanFailed(event.code)
        self._store.update(lambda s: s.with_error(error.kind, str(error)))

    def _on_scan_start_failed(self, event: ScanStartFailed) -> None:
        if not self._scanning or not self._is_current(event.generation):
            return
        exc = event.error
        _LOGGER.warning("Could not start scan: %s", exc)
        self._halt(release=False)
        if isinstance(exc, PeripheralSessionError) and exc.kind == ErrorKind.SCAN_UNAVAILABLE:
            kind, message = exc.kind, str(exc)
        else:
            kind, message = ErrorKind.SCAN_FAILED, f"Error starting scan: {exc}"
        self._store.update(lambda s: s.with_error(kind, message))

    def _on_stop(self, event: StopScan) -> None:
        self._halt(release=True)

    def _on_scan_timer(self, event: ScanTimerFired) -> None:
        if not self._scanning or not self._is_current(event.generation):
            return
        _LOGGER.debug("Scan period elapsed, stopping")
        self._halt(release=True)

    def _on_scan_stop_failed(self, event: ScanStopFailed) -> None:
        message = f"Error stopping scan: {event.error}"
        self._store.update(lambda s: s.with_error(ErrorKind.TRANSPORT_ERROR, message))

    # ── Internals ─────────────────────────────────────────────────

    def _halt(self, release: bool) -> None:
        """Leave the scanning phase.  Idempotent."""
        if not self._scanning:
            return
        self._next_generation()
        self._scan_timer.cancel()
        self._scanning = False
        self._store.update(lambda s: replace(s, scanning=False))
        if release:
            self._stop_task = self.spawn(
                self._end(self._begin_task), on_done=self._end_done
            )

    async def _end(self, begin_task: asyncio.Task[Any] | None) -> None:
        if begin_task is not None:
            if not begin_task.done():
                await asyncio.wait([begin_task])
            if begin_task.cancelled() or begin_task.exception() is not None:
                # Never started, nothing to end
                return
        await self._transport.end_discovery()

    def _end_done(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.debug("end_discovery failed", exc_info=exc)
            self.post(ScanStopFailed(exc))
