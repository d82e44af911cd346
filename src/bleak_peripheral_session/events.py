"""Typed events consumed by the discovery and connection state machines.

Every event that reports the outcome of something the machine started
(a transport call, a timer) carries the ``generation`` it was started
under.  The machine bumps its generation whenever it abandons an
attempt, so anything that arrives late is recognised and discarded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .state import PeerRecord

# ── Discovery session ─────────────────────────────────────────────


@dataclass(frozen=True)
class StartScan:
    pass


@dataclass(frozen=True)
class StopScan:
    pass


@dataclass(frozen=True)
class PeerObserved:
    generation: int
    handle: Any = field(repr=False)
    name: str | None
    address: str
    rssi: int


@dataclass(frozen=True)
class ScanAborted:
    """The transport reported ``scan_failed(code)`` for an active scan."""

    generation: int
    code: int


@dataclass(frozen=True)
class ScanStartFailed:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class ScanStopFailed:
    error: BaseException


@dataclass(frozen=True)
class ScanTimerFired:
    generation: int


# ── Connection lifecycle ──────────────────────────────────────────


@dataclass(frozen=True)
class ConnectRequested:
    peer: PeerRecord


@dataclass(frozen=True)
class DisconnectRequested:
    pass


@dataclass(frozen=True)
class Attached:
    generation: int
    handle: Any = field(repr=False)


@dataclass(frozen=True)
class AttachFailed:
    """Attach was rejected with a status code, or raised something else."""

    generation: int
    error: BaseException


@dataclass(frozen=True)
class AttachTimerFired:
    generation: int


@dataclass(frozen=True)
class SettleElapsed:
    generation: int


@dataclass(frozen=True)
class AttributesDiscovered:
    generation: int
    table: Any = field(repr=False)


@dataclass(frozen=True)
class AttributeDiscoveryError:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class AttributeValueRead:
    generation: int
    value: bytes


@dataclass(frozen=True)
class AttributeReadError:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class PeerDisconnected:
    generation: int


@dataclass(frozen=True)
class Released:
    """A teardown of the lifecycle's handle finished."""

    generation: int
    error: BaseException | None = None
