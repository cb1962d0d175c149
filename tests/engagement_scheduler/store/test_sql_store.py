import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time
from time import sleep

import pytest
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from engagement_scheduler import database
from engagement_scheduler.core.errors import Conflict, PolicyViolation
from engagement_scheduler.database import Base, UTCDateTime, enable_sqlite_write_lock, ensure_scheduling_schema
from engagement_scheduler.models.availability import Availability
from engagement_scheduler.models.booking import Booking
from engagement_scheduler.scheduling.service import SchedulingService
from engagement_scheduler.store.sql import SqlAlchemyStore
from conftest import FIXED_NOW, utc


@pytest.fixture
def sql_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=[Availability.__table__, Booking.__table__])
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=[Booking.__table__, Availability.__table__])
        engine.dispose()


@pytest.fixture
def sql_store(sql_engine) -> SqlAlchemyStore:
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=sql_engine)
    return SqlAlchemyStore(testing_session_local)


@pytest.fixture
def sql_scheduler(sql_store, clock) -> SchedulingService:
    service = SchedulingService(sql_store, clock=clock)
    service.start()
    yield service
    service.stop()


def create_availability(scheduler: SchedulingService, **overrides) -> Availability:
    fields = {
        'owner_id': 'provider-1',
        'schedule_type': 'recurring',
        'start_date': date(2026, 3, 1),
        'end_date': date(2026, 3, 31),
        'daily_start_time': time(9, 0),
        'daily_end_time': time(17, 0),
        'time_zone': 'UTC',
        'recurrence_days': [0, 1, 2, 3, 4],
        'max_bookings': 2,
        'minimum_notice_hours': 0,
        'maximum_advance_days': 30,
    }
    fields.update(overrides)
    return scheduler.create_availability(fields)


def request(scheduler: SchedulingService, availability_id: int, start_hour: int):
    return scheduler.request_booking({
        'availability_id': availability_id,
        'booked_by': 'client-1',
        'start_time': utc(2026, 3, 3, start_hour),
        'end_time': utc(2026, 3, 3, start_hour + 1),
        'attendee_info': {'email': 'client@example.com'},
    })


def test_availability_round_trips_through_database(sql_scheduler) -> None:
    created = create_availability(sql_scheduler)

    loaded = sql_scheduler.get_availability(created.id)

    assert loaded is not created
    assert loaded.recurrence_days == [0, 1, 2, 3, 4]
    assert loaded.daily_start_time == time(9, 0)
    assert loaded.created_at == FIXED_NOW


def test_booking_instants_come_back_timezone_aware(sql_scheduler) -> None:
    availability = create_availability(sql_scheduler)
    booking = request(sql_scheduler, availability.id, 10)

    loaded = sql_scheduler.get_booking(booking.id)

    assert loaded.start_time == utc(2026, 3, 3, 10)
    assert loaded.start_time.utcoffset().total_seconds() == 0
    assert loaded.attendee_info == {'email': 'client@example.com'}


def test_current_bookings_tracks_active_rows(sql_scheduler) -> None:
    availability = create_availability(sql_scheduler)
    first = request(sql_scheduler, availability.id, 10)
    request(sql_scheduler, availability.id, 12)

    assert sql_scheduler.get_availability(availability.id).current_bookings == 2
    with pytest.raises(PolicyViolation) as exception_info:
        request(sql_scheduler, availability.id, 14)
    assert exception_info.value.reason == 'capacity'

    sql_scheduler.cancel_booking(first.id, 'client-1', 'Rescheduling')

    assert sql_scheduler.get_availability(availability.id).current_bookings == 1
    request(sql_scheduler, availability.id, 14)


def test_overlapping_request_conflicts(sql_scheduler) -> None:
    availability = create_availability(sql_scheduler)
    existing = request(sql_scheduler, availability.id, 10)

    with pytest.raises(Conflict) as exception_info:
        sql_scheduler.request_booking({
            'availability_id': availability.id,
            'booked_by': 'client-2',
            'start_time': utc(2026, 3, 3, 10, 30),
            'end_time': utc(2026, 3, 3, 11, 30),
        })

    assert [booking.id for booking in exception_info.value.conflicting_bookings] == [existing.id]
    assert len(sql_scheduler.list_bookings(availability_id=availability.id)) == 1


def test_failed_transaction_rolls_back(sql_store, sql_scheduler) -> None:
    availability = create_availability(sql_scheduler)

    with pytest.raises(RuntimeError):
        with sql_store.transaction():
            sql_store.add_booking(Booking(
                availability_id=availability.id,
                booked_by='client-1',
                start_time=utc(2026, 3, 3, 10),
                end_time=utc(2026, 3, 3, 11),
                time_zone='UTC',
                duration_minutes=60,
                status='pending',
            ))
            raise RuntimeError('abort')

    assert sql_store.list_bookings(availability_id=availability.id) == []
    assert sql_store.get_availability(availability.id).current_bookings == 0


def test_update_and_lifecycle_persist(sql_scheduler) -> None:
    availability = create_availability(sql_scheduler)
    booking = request(sql_scheduler, availability.id, 10)

    sql_scheduler.update_booking(booking.id, {'start_time': utc(2026, 3, 3, 13), 'end_time': utc(2026, 3, 3, 14, 30)})
    sql_scheduler.confirm_booking(booking.id, 'provider-1')

    loaded = sql_scheduler.get_booking(booking.id)
    assert loaded.status == 'confirmed'
    assert loaded.duration_minutes == 90
    assert loaded.confirmed_at == FIXED_NOW
    assert sql_scheduler.booking_stats(availability.id)['confirmed'] == 1


def test_delete_availability_without_bookings(sql_scheduler) -> None:
    availability = create_availability(sql_scheduler)

    sql_scheduler.delete_availability(availability.id)

    assert sql_scheduler.store.get_availability(availability.id) is None


def test_utc_datetime_rejects_naive_values() -> None:
    with pytest.raises(ValueError):
        UTCDateTime().process_bind_param(datetime(2026, 3, 3, 10), None)


def test_ensure_scheduling_schema_creates_indexes(sql_engine, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(database, '_scheduling_schema_checked', False)

    ensure_scheduling_schema(sql_engine)

    booking_indexes = {index['name'] for index in inspect(sql_engine).get_indexes('bookings')}
    assert 'idx_bookings_availability_time' in booking_indexes
    assert database._scheduling_schema_checked is True


def test_ensure_scheduling_schema_adds_missing_availability_columns(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    with engine.begin() as connection:
        connection.execute(text(
            'CREATE TABLE availability (id INTEGER PRIMARY KEY, owner_id VARCHAR, status VARCHAR, '
            'start_date DATE, end_date DATE)'
        ))
        connection.execute(text("INSERT INTO availability (id, owner_id, status) VALUES (1, 'provider-1', 'available')"))
    monkeypatch.setattr(database, '_scheduling_schema_checked', False)

    ensure_scheduling_schema(engine)

    columns = {column['name'] for column in inspect(engine).get_columns('availability')}
    assert {'recurrence_pattern', 'day_of_month', 'buffer_minutes'} <= columns
    with engine.connect() as connection:
        assert connection.execute(text('SELECT buffer_minutes FROM availability')).scalar_one() == 0
    engine.dispose()


def test_default_sqlite_engine_begins_immediate_transactions() -> None:
    if database.engine.dialect.name != 'sqlite':
        pytest.skip('default engine is not SQLite')

    assert event.contains(database.engine, 'begin', database._begin_immediate)
    assert event.contains(database.engine, 'connect', database._disable_pysqlite_begin)


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'scheduling.db'}",
        connect_args={'check_same_thread': False},
    )
    enable_sqlite_write_lock(engine)
    Base.metadata.create_all(bind=engine, tables=[Availability.__table__, Booking.__table__])
    try:
        yield engine
    finally:
        engine.dispose()


def test_concurrent_requests_on_file_database_book_slot_once(file_engine, clock, monkeypatch: pytest.MonkeyPatch) -> None:
    store = SqlAlchemyStore(
        sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=file_engine)
    )
    scheduler = SchedulingService(store, clock=clock)
    scheduler.start()
    availability = create_availability(scheduler, max_bookings=5)

    list_active_bookings = store.list_active_bookings

    def slow_list_active_bookings(*args, **kwargs):
        bookings = list_active_bookings(*args, **kwargs)
        sleep(0.05)
        return bookings

    monkeypatch.setattr(store, 'list_active_bookings', slow_list_active_bookings)
    barrier = threading.Barrier(4)

    def attempt(index: int):
        barrier.wait()
        try:
            return scheduler.request_booking({
                'availability_id': availability.id,
                'booked_by': f'client-{index}',
                'start_time': utc(2026, 3, 3, 10),
                'end_time': utc(2026, 3, 3, 11),
            })
        except Conflict as error:
            return error

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(attempt, range(4)))

    assert sum(isinstance(result, Booking) for result in results) == 1
    assert sum(isinstance(result, Conflict) for result in results) == 3
    assert len(store.list_bookings(availability_id=availability.id)) == 1
    assert scheduler.get_availability(availability.id).current_bookings == 1
    scheduler.stop()
