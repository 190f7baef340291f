import pytest

from tests.fakes import FakeClock, FakeScheduler


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()
