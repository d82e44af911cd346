"""Shared fixtures."""

import pytest

from bleak_peripheral_session.const import SessionConfig
from bleak_peripheral_session.state import SessionStore
from helpers import FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def config():
    return SessionConfig(
        scan_period=5.0,
        attach_timeout=5.0,
        settle_delay=0.0,
        disconnect_timeout=0.5,
    )
