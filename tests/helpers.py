"""Test doubles and helpers shared by the test modules."""

import asyncio
import time

from bleak_peripheral_session.const import BATTERY_LEVEL_UUID, BATTERY_SERVICE_UUID
from bleak_peripheral_session.state import PeerRecord


class FakeTransport:
    """Records every call and lets a test decide how each one ends.

    - ``attach_gate``: when set to an ``asyncio.Event``, ``attach`` waits
      for it (leave it unset to simulate a hanging attach).
    - ``*_error``: raised by the matching operation.
    """

    def __init__(self):
        self.calls = []
        self.on_peer_observed = None
        self.on_scan_failed = None
        self.begin_error = None
        self.end_error = None
        self.attach_gate = None
        self.attach_error = None
        self.detach_error = None
        self.discover_error = None
        self.read_error = None
        self.table = {BATTERY_SERVICE_UUID: [BATTERY_LEVEL_UUID]}
        self.read_value = b"\x32"
        self.disconnect_callbacks = {}
        self.open_handles = set()
        self.max_open = 0

    def names(self):
        return [call[0] for call in self.calls]

    async def begin_discovery(self, on_peer_observed, on_scan_failed):
        self.calls.append(("begin_discovery",))
        if self.begin_error is not None:
            raise self.begin_error
        self.on_peer_observed = on_peer_observed
        self.on_scan_failed = on_scan_failed

    async def end_discovery(self):
        self.calls.append(("end_discovery",))
        if self.end_error is not None:
            raise self.end_error

    async def attach(self, peer_handle, on_disconnected):
        self.calls.append(("attach", peer_handle))
        self.disconnect_callbacks[peer_handle] = on_disconnected
        if self.attach_gate is not None:
            await self.attach_gate.wait()
        if self.attach_error is not None:
            raise self.attach_error
        handle = f"conn-{peer_handle}"
        self.open_handles.add(handle)
        self.max_open = max(self.max_open, len(self.open_handles))
        return handle

    async def detach(self, connection_handle):
        self.calls.append(("detach", connection_handle))
        self.open_handles.discard(connection_handle)
        if self.detach_error is not None:
            raise self.detach_error

    async def discover_attributes(self, connection_handle):
        self.calls.append(("discover_attributes", connection_handle))
        if self.discover_error is not None:
            raise self.discover_error
        return self.table

    async def read_attribute(self, connection_handle, attribute_id):
        self.calls.append(("read_attribute", connection_handle, attribute_id))
        if self.read_error is not None:
            raise self.read_error
        return self.read_value


class FakeAccessGate:
    def __init__(self, has_access=True, grant=True):
        self.has_access = has_access
        self.grant = grant
        self.requests = 0

    def has_required_access(self):
        return self.has_access

    async def request_access(self):
        self.requests += 1
        return self.grant


async def wait_until(predicate, timeout=1.0):
    """Let the loop run until *predicate()* holds, or fail."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def make_peer(address="AA:BB:CC:DD:EE:01", name="Speaker", rssi=-60):
    return PeerRecord(handle=f"dev-{address}", name=name, address=address, rssi=rssi)
