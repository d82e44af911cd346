"""Constants and configuration dataclasses for bleak-peripheral-session."""

from __future__ import annotations

import platform
from dataclasses import dataclass

IS_LINUX = platform.system() == "Linux"

# How long a discovery session runs before it stops itself (seconds).
SCAN_PERIOD = 10.0

# Attach timeout enforced by the lifecycle, independent of whatever
# timeout the transport applies internally.
ATTACH_TIMEOUT = 10.0

# Pause between attach and attribute discovery.  Some peripherals do
# not answer service discovery until their firmware has settled.
SETTLE_DELAY = 0.6

# How long to wait for a disconnect to complete before giving up.
DISCONNECT_TIMEOUT = 5.0

BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"

UNKNOWN_DEVICE_NAME = "Unknown Device"

# Generic GATT failure, used when the transport gives no status code.
ATTACH_STATUS_FAILURE = 257

# ── Attach status codes ────────────────────────────────────────────
# Codes reported by the radio stack when an attach is refused.  Only
# the ones commonly seen in practice are listed; the rest fall through
# to "Connection error: status N".

ATTACH_STATUS_REJECTED = 8
ATTACH_STATUS_LINK_TIMEOUT = 19
ATTACH_STATUS_FAILED = 22
ATTACH_STATUS_LINKED_ELSEWHERE = 133

ATTACH_STATUS_REASONS: dict[int, str] = {
    ATTACH_STATUS_REJECTED: (
        "Connection rejected (error 8) - "
        "Make sure the device is in pairing mode"
    ),
    ATTACH_STATUS_LINK_TIMEOUT: (
        "Connection timed out (error 19) - Device may be out of range"
    ),
    ATTACH_STATUS_FAILED: (
        "Connection failed (error 22) - Try restarting the Bluetooth device"
    ),
    ATTACH_STATUS_LINKED_ELSEWHERE: (
        "Connection failed (error 133) - "
        "Device might be connected to another phone"
    ),
}

ATTACH_TIMEOUT_MESSAGE = (
    "Connection timeout. Try again or select a different device."
)


def attach_status_reason(code: int) -> str:
    """Return a human-readable reason for an attach status code."""
    return ATTACH_STATUS_REASONS.get(code, f"Connection error: status {code}")


@dataclass
class SessionConfig:
    """Timing configuration for discovery and connection.

    Parameters
    ----------
    scan_period:
        Seconds a discovery session runs before stopping itself.
    attach_timeout:
        Seconds to wait for the transport to report attached or
        rejected.  When exceeded the attempt fails with a timeout and
        the half-open attach is torn down.
    settle_delay:
        Seconds to wait after attach before asking the peer for its
        attribute table.
    disconnect_timeout:
        Ceiling on a single transport detach.  A detach that exceeds it
        is abandoned; the lifecycle still reaches idle.
    """

    scan_period: float = SCAN_PERIOD
    attach_timeout: float = ATTACH_TIMEOUT
    settle_delay: float = SETTLE_DELAY
    disconnect_timeout: float = DISCONNECT_TIMEOUT
