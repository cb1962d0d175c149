import threading
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from engagement_scheduler.database import SessionLocal
from engagement_scheduler.models.availability import Availability
from engagement_scheduler.models.booking import STATUS_CANCELLED, Booking
from engagement_scheduler.store.base import AvailabilityStore


class SqlAlchemyStore(AvailabilityStore):
    """Store backed by SQLAlchemy sessions.

    The outermost ``transaction()`` on a thread opens a session and commits or
    rolls back when it exits; nested calls reuse it. ``get_availability`` with
    ``for_update=True`` locks the availability row on backends that support
    ``SELECT ... FOR UPDATE``, which serialises concurrent bookings against the
    same availability. SQLite has no row locks; engines set up with
    ``enable_sqlite_write_lock`` take the database write lock instead.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory
        self._local = threading.local()

    @property
    def _session(self) -> Session | None:
        return getattr(self._local, 'session', None)

    @contextmanager
    def transaction(self):
        if self._session is not None:
            yield self
            return

        session = self._session_factory()
        self._local.session = session
        try:
            yield self
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            self._local.session = None

    def get_availability(self, availability_id: int, for_update: bool = False) -> Availability | None:
        with self.transaction():
            query = self._session.query(Availability).filter(Availability.id == availability_id)
            if for_update:
                query = query.with_for_update()
            return query.first()

    def add_availability(self, availability: Availability) -> Availability:
        with self.transaction():
            self._session.add(availability)
            self._session.flush()
            return availability

    def save_availability(self, availability: Availability) -> Availability:
        with self.transaction():
            availability = self._session.merge(availability)
            self._session.flush()
            return availability

    def delete_availability(self, availability: Availability) -> None:
        with self.transaction():
            self._session.delete(self._session.merge(availability))
            self._session.flush()

    def get_booking(self, booking_id: int) -> Booking | None:
        with self.transaction():
            return self._session.query(Booking).filter(Booking.id == booking_id).first()

    def add_booking(self, booking: Booking) -> Booking:
        with self.transaction():
            self._session.add(booking)
            self._session.flush()
            self.refresh_current_bookings(booking.availability_id)
            return booking

    def save_booking(self, booking: Booking) -> Booking:
        with self.transaction():
            booking = self._session.merge(booking)
            self._session.flush()
            self.refresh_current_bookings(booking.availability_id)
            return booking

    def list_bookings(
        self,
        availability_id: int | None = None,
        booked_by: str | None = None,
        status: str | None = None,
    ) -> list[Booking]:
        with self.transaction():
            query = self._session.query(Booking)
            if availability_id is not None:
                query = query.filter(Booking.availability_id == availability_id)
            if booked_by is not None:
                query = query.filter(Booking.booked_by == booked_by)
            if status is not None:
                query = query.filter(Booking.status == status)
            return query.order_by(Booking.start_time.asc()).all()

    def list_active_bookings(
        self,
        availability_id: int,
        time_range: tuple[datetime, datetime] | None = None,
        exclude_booking_id: int | None = None,
    ) -> list[Booking]:
        with self.transaction():
            query = self._session.query(Booking).filter(
                Booking.availability_id == availability_id,
                Booking.status != STATUS_CANCELLED,
            )
            if time_range is not None:
                range_start, range_end = time_range
                query = query.filter(
                    Booking.start_time < range_end,
                    Booking.end_time > range_start,
                )
            if exclude_booking_id is not None:
                query = query.filter(Booking.id != exclude_booking_id)
            return query.order_by(Booking.start_time.asc()).all()

    def count_active_bookings(self, availability_id: int) -> int:
        with self.transaction():
            return self._session.query(func.count(Booking.id)).filter(
                Booking.availability_id == availability_id,
                Booking.status != STATUS_CANCELLED,
            ).scalar() or 0
