import pytest

from dues.src.billing.subscriptions import MembershipService
from dues.src.billing.subscriptions.locks import SubscriptionLocks
from dues.tests.fakes import FakeGateway, InMemoryDirectory, InMemoryLinks, make_member, utc

NOW = utc(2025, 6, 15, 12, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def member():
    return make_member()


@pytest.fixture
def directory(member):
    return InMemoryDirectory([member])


@pytest.fixture
def links():
    return InMemoryLinks()


@pytest.fixture
def locks():
    return SubscriptionLocks()


@pytest.fixture
def service(gateway, directory, links, locks, clock):
    return MembershipService(gateway=gateway, directory=directory, links=links, locks=locks, clock=clock)
