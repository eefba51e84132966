"""Shared pytest fixtures: an isolated store and a manually driven timer."""

from typing import Callable, List

import pytest

from claimdesk.forms.autosave import SaveScheduler
from claimdesk.storage.claim_store import ClaimStore


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, delay: float, fn: Callable[[], None]):
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.started and not self.cancelled:
            self.fn()


@pytest.fixture
def timers() -> List[FakeTimer]:
    return []


@pytest.fixture
def timer_factory(timers: List[FakeTimer]) -> Callable[[float, Callable[[], None]], FakeTimer]:
    """Timer factory that records every timer it builds in ``timers``."""
    def factory(delay, fn):
        timer = FakeTimer(delay, fn)
        timers.append(timer)
        return timer

    return factory


@pytest.fixture
def scheduler(timer_factory) -> SaveScheduler:
    return SaveScheduler(default_delay=2.0, timer_factory=timer_factory)


@pytest.fixture
def store(tmp_path) -> ClaimStore:
    return ClaimStore(data_dir=str(tmp_path / "data"))


@pytest.fixture
def marine_type(store):
    return store.create_policy_type("Marine Cargo", description="Goods in transit")


@pytest.fixture
def claim(store, marine_type):
    return store.create_claim(marine_type.id, "Water damage to cargo", user_id="user-1")
