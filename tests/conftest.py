"""
Shared fixtures: a cooperative on in-memory storage with a fixed clock and a
notifier that records every message.
"""

import pytest

from coop_ledger.config import CoopSettings
from coop_ledger.cooperative import Cooperative
from coop_ledger.dates import FixedClock
from coop_ledger.notifications import RecordingNotifier
from coop_ledger.storage import InMemoryStore


@pytest.fixture
def clock():
    return FixedClock("2024-01-01")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def coop(store, clock, notifier):
    return Cooperative(store, clock=clock, notify=notifier, settings=CoopSettings())


@pytest.fixture
def member(coop):
    return coop.members.add("Ana Torres", phone="555-0101")
