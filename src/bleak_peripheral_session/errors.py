"""Exception taxonomy for discovery and connection failures.

Only :class:`AlreadyScanning` is ever raised to a caller.  Every other
error is raised by a transport, caught by the state machine that issued
the operation, and turned into ``last_error`` on the session snapshot.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Kinds of error surfaced through ``SessionState.error_kind``."""

    SCAN_UNAVAILABLE = "scan_unavailable"
    SCAN_FAILED = "scan_failed"
    ATTACH_REJECTED = "attach_rejected"
    ATTACH_TIMEOUT = "attach_timeout"
    ATTRIBUTE_DISCOVERY_FAILED = "attribute_discovery_failed"
    ATTRIBUTE_READ_FAILED = "attribute_read_failed"
    PERMISSION_DENIED = "permission_denied"
    TRANSPORT_ERROR = "transport_error"
    UNKNOWN_PEER = "unknown_peer"
    ALREADY_SCANNING = "already_scanning"


class PeripheralSessionError(Exception):
    """Base class for all errors raised by this package."""

    kind: ErrorKind = ErrorKind.TRANSPORT_ERROR


class AlreadyScanning(PeripheralSessionError):
    """A discovery session is already active."""

    kind = ErrorKind.ALREADY_SCANNING

    def __init__(self) -> None:
        super().__init__("A scan is already in progress")


class ScanUnavailable(PeripheralSessionError):
    """The radio is absent or switched off."""

    kind = ErrorKind.SCAN_UNAVAILABLE

    def __init__(self, message: str = "Bluetooth LE scanner not available") -> None:
        super().__init__(message)


class ScanFailed(PeripheralSessionError):
    """The transport aborted an active scan."""

    kind = ErrorKind.SCAN_FAILED

    def __init__(self, code: int) -> None:
        self.code = code
        super().__init__(f"Scan failed with error: {code}")


class AttachRejected(PeripheralSessionError):
    """The transport refused or dropped an attach attempt."""

    kind = ErrorKind.ATTACH_REJECTED

    def __init__(self, code: int, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        super().__init__(detail or f"Attach rejected with status {code}")


class AttachTimeout(PeripheralSessionError):
    """No attach outcome arrived before the attach timer fired."""

    kind = ErrorKind.ATTACH_TIMEOUT


class AttributeDiscoveryFailed(PeripheralSessionError):
    """The peer's attribute table could not be enumerated."""

    kind = ErrorKind.ATTRIBUTE_DISCOVERY_FAILED


class AttributeReadFailed(PeripheralSessionError):
    """Reading an attribute failed or returned no data."""

    kind = ErrorKind.ATTRIBUTE_READ_FAILED


class PermissionDenied(PeripheralSessionError):
    """The permission layer refused radio access."""

    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, message: str = "Bluetooth permission denied") -> None:
        super().__init__(message)


class TransportError(PeripheralSessionError):
    """Generic adapter-level fault (teardown, stop, read plumbing)."""

    kind = ErrorKind.TRANSPORT_ERROR
