"""Shared fixtures for the household ledger tests."""

import pytest
import pytest_asyncio

from household_ledger import Ledger
from household_ledger.config import LedgerSettings
from household_ledger.events import topics


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary directory, ignoring any .env file."""
    return LedgerSettings(
        _env_file=None,
        data_dir=tmp_path / "data",
        settings_debounce_seconds=0.01,
        open_retry_attempts=1,
        open_retry_max_wait=0.0,
        log_json=False,
    )


@pytest_asyncio.fixture
async def ledger(settings):
    """An initialized ledger on the structured store."""
    instance = Ledger(settings=settings)
    await instance.initialize()
    yield instance
    await instance.destroy()


class EventRecorder:
    """Collects (topic, payload) pairs published on a bus."""
    
    def __init__(self):
        self.events = []
    
    def attach(self, bus, watched=topics.ALL_TOPICS):
        for topic in watched:
            bus.subscribe(topic, self._handler_for(topic))
    
    def _handler_for(self, topic):
        def handle(payload):
            self.events.append((topic, payload))
        return handle
    
    @property
    def topics(self):
        return [topic for topic, _ in self.events]
    
    def payloads(self, topic):
        return [payload for t, payload in self.events if t == topic]


@pytest.fixture
def recorder():
    return EventRecorder()


def expense(amount=1000, date="2024-03-15", category="Food", **extra):
    draft = {"date": date, "kind": "expense", "category": category, "amount": amount}
    draft.update(extra)
    return draft


def income(amount=1000, date="2024-03-15", category="Salary", **extra):
    draft = {"date": date, "kind": "income", "category": category, "amount": amount}
    draft.update(extra)
    return draft
