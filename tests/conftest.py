import random
from datetime import datetime, timedelta, timezone

import pytest

from fulfillment_queue.engine import TimingEngine
from fulfillment_queue.persistence import MemorySnapshotStore

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def snapshot_store():
    return MemorySnapshotStore()


@pytest.fixture
def engine(clock, snapshot_store):
    e = TimingEngine(store=snapshot_store, clock=clock, rng=random.Random(7))
    e.start()
    return e
