import pytest

from alerts.engine import AlertEngine
from alerts.rate_limit import RateLimiter
from alerts.state import SubjectStateStore
from notifier import CollectingNotifier
from persistence import DebouncedDocument, MemoryDocumentStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def engine(clock, notifier):
    document = DebouncedDocument(MemoryDocumentStore(), "alert_state", clock=clock)
    return AlertEngine(
        SubjectStateStore(document, clock=clock),
        notifier,
        RateLimiter(3, 600, clock=clock),
        clock=clock,
    )
