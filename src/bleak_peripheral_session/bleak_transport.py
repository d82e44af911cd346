"""Transport implementation on top of bleak and bleak-retry-connector.

- Discovery uses a long-running ``BleakScanner`` with a detection
  callback and **no** ``service_uuids`` filter.
- Attach goes through ``bleak_retry_connector.establish_connection``
  with ``max_attempts=1``.  The lifecycle owns the timeout and the
  retry decision (the user picks again); the connector still handles
  the BlueZ quirks of a single attempt.
- Attribute discovery flattens ``client.services`` into
  ``{service_uuid: [char_uuid, ...]}`` with bleak's UUID normalisation.

Failures are translated into this package's exceptions so the state
machines never see a ``BleakError``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError
from bleak.uuids import normalize_uuid_str

from .const import ATTACH_STATUS_FAILURE, IS_LINUX
from .errors import (
    AttachRejected,
    AttributeDiscoveryFailed,
    AttributeReadFailed,
    ScanUnavailable,
    TransportError,
)
from .transport import (
    AttributeTable,
    DisconnectedCallback,
    PeerObservedCallback,
    ScanFailedCallback,
)

try:
    from bleak_retry_connector import establish_connection as _brc_establish_connection
except ImportError as _exc:
    raise ImportError(
        "bleak-retry-connector is required: pip install bleak-retry-connector"
    ) from _exc

_LOGGER = logging.getLogger(__name__)

_STATUS_RE = re.compile(r"(?:status|error)\D{0,3}(\d+)", re.IGNORECASE)

_UNAVAILABLE_MARKERS = (
    "no bluetooth adapters found",
    "bluetooth device is turned off",
    "not available",
    "not powered",
)


def parse_status_code(exc: BaseException) -> int:
    """Extract a numeric status from a bleak error message.

    Falls back to :data:`ATTACH_STATUS_FAILURE` when the backend did not
    include one.
    """
    match = _STATUS_RE.search(str(exc))
    if match is None:
        return ATTACH_STATUS_FAILURE
    return int(match.group(1))


def _is_unavailable(exc: BaseException) -> bool:
    err_str = str(exc).lower()
    return any(marker in err_str for marker in _UNAVAILABLE_MARKERS)


class BleakTransport:
    """Bleak-backed radio transport.

    Parameters
    ----------
    adapter:
        Adapter to scan and connect on (``hci0`` …).  Linux only;
        ignored elsewhere.
    scanning_mode:
        ``"active"`` (default) asks peripherals for scan responses, which
        is where many of them put their name.
    """

    def __init__(
        self, adapter: str | None = None, scanning_mode: str = "active"
    ) -> None:
        self._adapter = adapter
        self._scanning_mode = scanning_mode
        self._scanner: BleakScanner | None = None

    def _adapter_kwargs(self) -> dict[str, Any]:
        if IS_LINUX and self._adapter:
            return {"adapter": self._adapter}
        return {}

    async def begin_discovery(
        self,
        on_peer_observed: PeerObservedCallback,
        on_scan_failed: ScanFailedCallback,
    ) -> None:
        # bleak never aborts a running scan asynchronously; start errors
        # are raised here instead, so on_scan_failed is not called.
        if self._scanner is not None:
            _LOGGER.debug("Replacing a scanner that was never stopped")
            await self._stop_scanner()

        def _detection_callback(
            device: BLEDevice, advertisement_data: AdvertisementData
        ) -> None:
            on_peer_observed(
                device,
                advertisement_data.local_name or device.name,
                device.address,
                advertisement_data.rssi,
            )

        scanner = BleakScanner(
            detection_callback=_detection_callback,
            service_uuids=None,
            scanning_mode=self._scanning_mode,
            **self._adapter_kwargs(),
        )
        try:
            await scanner.start()
        except BleakError as exc:
            if _is_unavailable(exc):
                raise ScanUnavailable() from exc
            raise TransportError(str(exc)) from exc
        except OSError as exc:
            raise ScanUnavailable() from exc
        self._scanner = scanner
        _LOGGER.debug("Scanner started (adapter=%s)", self._adapter or "default")

    async def end_discovery(self) -> None:
        if self._scanner is None:
            raise TransportError("No scan in progress")
        await self._stop_scanner()

    async def _stop_scanner(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except BleakError as exc:
            raise TransportError(str(exc)) from exc
        _LOGGER.debug("Scanner stopped")

    async def attach(
        self, peer_handle: BLEDevice, on_disconnected: DisconnectedCallback
    ) -> BleakClient:
        name = peer_handle.name or peer_handle.address
        try:
            return await _brc_establish_connection(
                BleakClient,
                peer_handle,
                name,
                disconnected_callback=lambda _client: on_disconnected(),
                max_attempts=1,
            )
        except BleakError as exc:
            _LOGGER.debug("%s: attach failed", peer_handle.address, exc_info=True)
            raise AttachRejected(parse_status_code(exc), str(exc)) from exc

    async def detach(self, connection_handle: BleakClient) -> None:
        if not connection_handle.is_connected:
            return
        try:
            await connection_handle.disconnect()
        except BleakError as exc:
            raise TransportError(str(exc)) from exc

    async def discover_attributes(
        self, connection_handle: BleakClient
    ) -> AttributeTable:
        services = connection_handle.services
        if not services:
            raise AttributeDiscoveryFailed(
                f"GATT services empty for {connection_handle.address}"
            )
        return {
            normalize_uuid_str(service.uuid): [
                normalize_uuid_str(char.uuid) for char in service.characteristics
            ]
            for service in services
        }

    async def read_attribute(
        self, connection_handle: BleakClient, attribute_id: str
    ) -> bytes:
        try:
            data = await connection_handle.read_gatt_char(attribute_id)
        except BleakError as exc:
            raise AttributeReadFailed(str(exc)) from exc
        return bytes(data)
