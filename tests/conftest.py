# conftest.py
# Put the repository root on sys.path so the flat top-level modules
# (state_machine, models_repo, api, ...) import the same way they do at runtime.

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)

if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from state_machine import DonationLedger  # noqa: E402


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return DonationLedger("admin", clock=clock)


@pytest.fixture
def seeded(ledger):
    """Ledger with donor D and recipient R registered."""
    ledger.register_donor("D", "Corner Bakery", "d@example.org")
    ledger.register_recipient("R", "Food Pantry", "r@example.org")
    return ledger
