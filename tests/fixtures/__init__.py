"""Test fixtures for the BeatWell client."""

from tests.fixtures.mocks import (
    FakeClock,
    MockRemoteGateway,
    NetworkSwitch,
)

__all__ = [
    "FakeClock",
    "MockRemoteGateway",
    "NetworkSwitch",
]
