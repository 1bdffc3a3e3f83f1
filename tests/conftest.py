"""
Pytest fixtures for amrr-rate-control tests.

Provides configs, mode sets, capabilities, a controllable clock and
controller fixtures.
"""

import pytest
import os
import sys
from unittest.mock import MagicMock

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from amrr.config import Config
from amrr.controller import AmrrRateController
from amrr.rates import modes_for_standard
from amrr.station_manager import PeerCapabilities


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def config():
    """Default AMRR configuration."""
    return Config()


@pytest.fixture
def strict_config():
    """Configuration that asserts on invariant violations."""
    return Config(strict_invariants=True)


@pytest.fixture
def ofdm_modes():
    """The eight 802.11a OFDM modes, 6 to 54 Mbps."""
    return modes_for_standard("80211a")


@pytest.fixture
def capabilities(ofdm_modes):
    """Peer capabilities with eight supported modes on a 20 MHz channel."""
    return PeerCapabilities(supported_modes=ofdm_modes, channel_width=20)


@pytest.fixture
def mock_logger():
    """Logger stand-in recording every log call."""
    logger = MagicMock()
    logger.getChild.return_value = logger
    return logger


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(config, capabilities, clock):
    """AMRR controller over 802.11a with a hand-driven clock."""
    return AmrrRateController(config, default_capabilities=capabilities, clock=clock)


@pytest.fixture
def sample_peer_ids():
    """Sample peer MAC addresses."""
    return [
        "00:00:00:00:00:01",
        "00:00:00:00:00:02",
        "00:00:00:00:00:03",
        "02:aa:bb:cc:dd:04",
        "02:aa:bb:cc:dd:05",
    ]
