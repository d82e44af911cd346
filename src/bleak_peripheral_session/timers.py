"""Generation-tagged one-shot timers on the asyncio loop.

A :class:`PhaseTimer` guards one phase of a state machine (a scan, an
attach, a settle delay).  Arming it records the machine's current
generation; when it fires it hands that generation back to the owner,
which compares it to its own and ignores the firing if the phase has
since been left.  Cancelling is idempotent and safe before arming.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

_LOGGER = logging.getLogger(__name__)


class PhaseTimer:
    """One-shot timer that reports the generation it was armed under.

    Parameters
    ----------
    name:
        Label used in log messages.
    on_fire:
        Called with the arming generation when the delay elapses.
    """

    def __init__(self, name: str, on_fire: Callable[[int], None]) -> None:
        self._name = name
        self._on_fire = on_fire
        self._handle: asyncio.TimerHandle | None = None
        self._generation: int | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def generation(self) -> int | None:
        """Generation of the pending firing, or ``None`` when disarmed."""
        return self._generation

    def arm(self, delay: float, generation: int) -> None:
        """(Re)arm the timer.  A pending firing is cancelled first."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._generation = generation
        self._handle = loop.call_later(delay, self._fire, generation)
        _LOGGER.debug(
            "%s timer armed for %.2f s (generation %d)",
            self._name,
            delay,
            generation,
        )

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            _LOGGER.debug(
                "%s timer cancelled (generation %d)", self._name, self._generation
            )
        self._handle = None
        self._generation = None

    def _fire(self, generation: int) -> None:
        # A re-arm replaces the handle, so only clear our own
        if self._generation == generation:
            self._handle = None
            self._generation = None
        _LOGGER.debug("%s timer fired (generation %d)", self._name, generation)
        self._on_fire(generation)
