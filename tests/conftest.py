import os
from datetime import date, datetime, time

import pytest
import pytz

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from engagement_scheduler.models.availability import Availability  # noqa: E402
from engagement_scheduler.scheduling.service import SchedulingService  # noqa: E402
from engagement_scheduler.store.memory import InMemoryStore  # noqa: E402

# Monday 2 March 2026, 08:00 UTC
FIXED_NOW = datetime(2026, 3, 2, 8, 0, tzinfo=pytz.UTC)


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=pytz.UTC)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def make_availability(store: InMemoryStore):
    def _make(**overrides) -> Availability:
        fields = {
            'owner_id': 'provider-1',
            'schedule_type': 'recurring',
            'start_date': date(2026, 3, 1),
            'end_date': date(2026, 4, 30),
            'daily_start_time': time(9, 0),
            'daily_end_time': time(17, 0),
            'time_zone': 'UTC',
            'status': 'available',
            'max_bookings': 5,
            'minimum_notice_hours': 0,
            'maximum_advance_days': 60,
        }
        fields.update(overrides)
        return store.add_availability(Availability(**fields))

    return _make


@pytest.fixture
def scheduler(store: InMemoryStore, clock) -> SchedulingService:
    service = SchedulingService(store, clock=clock)
    service.start()
    yield service
    service.stop()
