"""bleak-peripheral-session: BLE discovery and single-connection lifecycle.

Scans for nearby peripherals, connects to one at a time, reads its
battery level, and publishes everything as immutable snapshots for a
UI to render.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .const import (
    ATTACH_STATUS_REASONS,
    ATTACH_TIMEOUT,
    BATTERY_LEVEL_UUID,
    BATTERY_SERVICE_UUID,
    DISCONNECT_TIMEOUT,
    SCAN_PERIOD,
    SETTLE_DELAY,
    SessionConfig,
    attach_status_reason,
)
from .discovery import DiscoverySession
from .errors import (
    AlreadyScanning,
    AttachRejected,
    AttachTimeout,
    AttributeDiscoveryFailed,
    AttributeReadFailed,
    ErrorKind,
    PeripheralSessionError,
    PermissionDenied,
    ScanFailed,
    ScanUnavailable,
    TransportError,
)
from .lifecycle import ConnectionLifecycle
from .naming import DEFAULT_RULES, AddressRule, NameResolver
from .session import PeripheralSession
from .state import (
    ConnectionPhase,
    ConnectionState,
    PeerRecord,
    SessionState,
    SessionStore,
)
from .transport import AccessGate, AlwaysGranted, Transport

__all__ = [
    # Facade
    "PeripheralSession",
    # State machines
    "DiscoverySession",
    "ConnectionLifecycle",
    # State
    "ConnectionPhase",
    "ConnectionState",
    "PeerRecord",
    "SessionState",
    "SessionStore",
    # Collaborator contracts
    "AccessGate",
    "AlwaysGranted",
    "Transport",
    # Naming
    "AddressRule",
    "NameResolver",
    "DEFAULT_RULES",
    # Errors
    "ErrorKind",
    "PeripheralSessionError",
    "AlreadyScanning",
    "ScanUnavailable",
    "ScanFailed",
    "AttachRejected",
    "AttachTimeout",
    "AttributeDiscoveryFailed",
    "AttributeReadFailed",
    "PermissionDenied",
    "TransportError",
    # Configuration
    "SessionConfig",
    "attach_status_reason",
    "ATTACH_STATUS_REASONS",
    "ATTACH_TIMEOUT",
    "BATTERY_LEVEL_UUID",
    "BATTERY_SERVICE_UUID",
    "DISCONNECT_TIMEOUT",
    "SCAN_PERIOD",
    "SETTLE_DELAY",
]
