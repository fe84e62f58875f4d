import datetime as dt

import pytest

from clinicdesk.booking.adapters.memory import InMemoryClinicStore
from clinicdesk.booking.identity import IdentityResolver
from clinicdesk.booking.lifecycle import LifecycleEngine
from clinicdesk.booking.service import BookingService


def fixed_clock() -> dt.datetime:
    return dt.datetime(2026, 6, 10, 9, 30, tzinfo=dt.timezone.utc)


@pytest.fixture
def store() -> InMemoryClinicStore:
    return InMemoryClinicStore()


@pytest.fixture
def identity(store: InMemoryClinicStore) -> IdentityResolver:
    return IdentityResolver(store)


@pytest.fixture
def engine(store: InMemoryClinicStore) -> LifecycleEngine:
    return LifecycleEngine(store, clinic_timezone="UTC", clock=fixed_clock)


@pytest.fixture
def service(
    store: InMemoryClinicStore, identity: IdentityResolver, engine: LifecycleEngine
) -> BookingService:
    return BookingService(store, identity=identity, lifecycle=engine)
