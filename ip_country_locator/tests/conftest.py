import pytest

from ip_country_locator.tests.fakes import FakeCache, FakeStore


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_cache():
    return FakeCache()
