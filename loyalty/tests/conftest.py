from datetime import datetime, timedelta, timezone

import pytest

from loyalty.service import LoyaltyService
from loyalty.settings import LoyaltySettings
from loyalty.storage import InMemoryStorage


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_service(clock):
    def factory(**overrides):
        code_generator = overrides.pop("code_generator", None)
        storage = overrides.pop("storage", None) or InMemoryStorage()
        settings = LoyaltySettings(**overrides)
        return LoyaltyService(storage=storage, settings=settings, clock=clock, code_generator=code_generator)
    return factory


@pytest.fixture
def service(make_service):
    return make_service()
