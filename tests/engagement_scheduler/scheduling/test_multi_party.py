from datetime import time

import pytest

from engagement_scheduler.core.errors import InvalidRange, InvalidTimeZone
from engagement_scheduler.scheduling.conflicts import ConflictResolver
from engagement_scheduler.scheduling.lifecycle import BookingLifecycle
from engagement_scheduler.scheduling.multi_party import MultiPartyScheduler
from conftest import utc


@pytest.fixture
def scheduler_for(store, clock):
    def _build(max_results: int = 10) -> MultiPartyScheduler:
        return MultiPartyScheduler(
            ConflictResolver(store, clock),
            business_hours=(time(9, 0), time(17, 0)),
            max_results=max_results,
        )

    return _build


@pytest.fixture
def participants(make_availability):
    full_day = make_availability(owner_id='provider-1')
    afternoon = make_availability(
        owner_id='provider-2',
        daily_start_time=time(15, 0),
        daily_end_time=time(17, 0),
    )
    return [full_day, afternoon]


def test_single_shared_hour_is_found(scheduler_for, participants) -> None:
    slots = scheduler_for().find_common_slots(participants, 60, utc(2026, 3, 3, 9), utc(2026, 3, 3, 16))

    assert len(slots) == 1
    assert slots[0].start == utc(2026, 3, 3, 15)
    assert slots[0].end == utc(2026, 3, 3, 16)
    assert slots[0].participants == ('provider-1', 'provider-2')


def test_common_slots_stay_inside_every_window(scheduler_for, participants) -> None:
    slots = scheduler_for().find_common_slots(participants, 60, utc(2026, 3, 3, 0), utc(2026, 3, 5, 0))

    assert [(slot.start.day, slot.start.hour) for slot in slots] == [(3, 15), (3, 16), (4, 15), (4, 16)]


def test_busy_participant_removes_slot(scheduler_for, participants, store, clock) -> None:
    BookingLifecycle(store, clock).create({
        'availability_id': participants[0].id,
        'booked_by': 'client-9',
        'start_time': utc(2026, 3, 3, 15),
        'end_time': utc(2026, 3, 3, 16),
    })

    slots = scheduler_for().find_common_slots(participants, 60, utc(2026, 3, 3, 9), utc(2026, 3, 3, 17))

    assert [slot.start.hour for slot in slots] == [16]


def test_participant_buffer_removes_adjacent_slot(scheduler_for, make_availability, store, clock) -> None:
    buffered = make_availability(owner_id='provider-1', buffer_minutes=30)
    afternoon = make_availability(
        owner_id='provider-2',
        daily_start_time=time(15, 0),
        daily_end_time=time(17, 0),
    )
    BookingLifecycle(store, clock).create({
        'availability_id': buffered.id,
        'booked_by': 'client-9',
        'start_time': utc(2026, 3, 3, 14),
        'end_time': utc(2026, 3, 3, 14, 45),
    })

    slots = scheduler_for().find_common_slots([buffered, afternoon], 60, utc(2026, 3, 3, 9), utc(2026, 3, 3, 17))

    assert [slot.start.hour for slot in slots] == [16]


def test_participants_in_other_zones_are_checked_locally(scheduler_for, make_availability) -> None:
    london_day = make_availability(owner_id='provider-1', time_zone='Europe/London')
    # 16:00-18:00 Berlin is 15:00-17:00 UTC in March
    berlin_evening = make_availability(
        owner_id='provider-2',
        time_zone='Europe/Berlin',
        daily_start_time=time(16, 0),
        daily_end_time=time(18, 0),
    )

    slots = scheduler_for().find_common_slots(
        [london_day, berlin_evening], 30, utc(2026, 3, 3, 9), utc(2026, 3, 3, 17)
    )

    assert [(slot.start.hour, slot.start.minute) for slot in slots] == [(15, 0), (15, 30), (16, 0), (16, 30)]


def test_results_are_capped(scheduler_for, make_availability) -> None:
    availability = make_availability()

    slots = scheduler_for(max_results=3).find_common_slots(
        [availability], 30, utc(2026, 3, 3, 0), utc(2026, 3, 10, 0)
    )

    assert len(slots) == 3


def test_output_zone_is_applied(scheduler_for, participants) -> None:
    slots = scheduler_for().find_common_slots(
        participants, 60, utc(2026, 3, 3, 9), utc(2026, 3, 3, 17), output_time_zone='Europe/Lisbon'
    )

    assert slots
    assert all(slot.time_zone == 'Europe/Lisbon' for slot in slots)
    assert slots[0].to_dict()['timeZone'] == 'Europe/Lisbon'


def test_no_participants_yields_nothing(scheduler_for) -> None:
    assert scheduler_for().find_common_slots([], 60, utc(2026, 3, 3, 9), utc(2026, 3, 3, 17)) == []


def test_invalid_output_zone_is_rejected(scheduler_for, participants) -> None:
    with pytest.raises(InvalidTimeZone):
        scheduler_for().find_common_slots(participants, 60, utc(2026, 3, 3, 9), utc(2026, 3, 3, 17), 'Moon/Base')


@pytest.mark.parametrize(
    ('duration_minutes', 'earliest', 'latest'),
    [
        (60, utc(2026, 3, 3, 17), utc(2026, 3, 3, 9)),
        (0, utc(2026, 3, 3, 9), utc(2026, 3, 3, 17)),
    ],
)
def test_invalid_window_or_duration_is_rejected(scheduler_for, participants, duration_minutes, earliest, latest) -> None:
    with pytest.raises(InvalidRange):
        scheduler_for().find_common_slots(participants, duration_minutes, earliest, latest)
