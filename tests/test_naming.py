"""Tests for naming module."""

import pytest

from bleak_peripheral_session.naming import DEFAULT_RULES, AddressRule, NameResolver


@pytest.mark.parametrize(
    "advertised,address,expected",
    [
        ("JBL Flip", "F0:11:22:33:44:55", "JBL Flip"),
        (None, "F0:11:22:33:44:55", "Possible Boat Device"),
        (None, "f0:11:22:33:44:55", "Possible Boat Device"),
        (None, "11:22:EB:33:44:55", "Possible Boat Device"),
        ("  ", "11:22:EB:33:44:55", "Possible Boat Device"),
        (None, "11:22:33:44:55:66", "Unknown Device"),
        ("", "11:22:33:44:55:F0", "Unknown Device"),
    ],
)
def test_default_resolution(advertised, address, expected):
    assert NameResolver()(advertised, address) == expected


def test_rules_can_be_disabled():
    resolver = NameResolver(rules=())
    assert resolver(None, "F0:11:22:33:44:55") == "Unknown Device"


def test_rules_can_be_extended_in_order():
    resolver = NameResolver(
        rules=[AddressRule(r"^F0:11:", "Acme Tag"), *DEFAULT_RULES]
    )
    assert resolver(None, "F0:11:22:33:44:55") == "Acme Tag"
    assert resolver(None, "F0:99:22:33:44:55") == "Possible Boat Device"
    assert len(resolver.rules) == 2


def test_custom_unknown_label():
    resolver = NameResolver(rules=(), unknown_label="?")
    assert resolver(None, "AA") == "?"


def test_address_rule_equality_ignores_compiled_pattern():
    assert AddressRule("^F0:", "x") == AddressRule("^F0:", "x")
    assert AddressRule("^F0:", "x").matches("f0:00")
