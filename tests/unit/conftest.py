"""
Shared fixtures for the unit tests.
"""

import pytest

from tests.unit.fakes import FakeClock, FakeListings, FakeMarket


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def listings():
    return FakeListings()
