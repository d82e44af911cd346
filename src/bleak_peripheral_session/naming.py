"""Display-name resolution for observed peers.

Many peripherals (cheap audio gear in particular) advertise without a
local name.  A :class:`NameResolver` picks the best label it can:

1. The advertised name, when present.
2. The label of the first :class:`AddressRule` whose pattern matches
   the peer address (a best-effort vendor guess).
3. ``"Unknown Device"``.

Rules are data, not code in the state machine.  Pass a resolver with
no rules to disable the vendor guess, or add rules to extend it::

    resolver = NameResolver(
        rules=[*DEFAULT_RULES, AddressRule(r"^C8:2E:", "Possible Acme Tag")]
    )
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from .const import UNKNOWN_DEVICE_NAME


@dataclass(frozen=True)
class AddressRule:
    """Map addresses matching *pattern* (regex, case-insensitive) to *label*."""

    pattern: str
    label: str
    _regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_regex", re.compile(self.pattern, re.IGNORECASE))

    def matches(self, address: str) -> bool:
        return self._regex.search(address) is not None


DEFAULT_RULES: tuple[AddressRule, ...] = (
    AddressRule(r"^F0:|:EB:", "Possible Boat Device"),
)


class NameResolver:
    """Resolve a display name from an advertised name and an address."""

    def __init__(
        self,
        rules: Iterable[AddressRule] = DEFAULT_RULES,
        unknown_label: str = UNKNOWN_DEVICE_NAME,
    ) -> None:
        self._rules = tuple(rules)
        self._unknown_label = unknown_label

    @property
    def rules(self) -> tuple[AddressRule, ...]:
        return self._rules

    def __call__(self, advertised_name: str | None, address: str) -> str:
        if advertised_name and advertised_name.strip():
            return advertised_name
        for rule in self._rules:
            if rule.matches(address):
                return rule.label
        return self._unknown_label
