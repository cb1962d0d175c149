import itertools
from contextlib import contextmanager
from datetime import datetime
from threading import RLock

from engagement_scheduler.models.availability import Availability
from engagement_scheduler.models.booking import STATUS_CANCELLED, Booking
from engagement_scheduler.scheduling.timezone_math import overlap
from engagement_scheduler.store.base import AvailabilityStore


class InMemoryStore(AvailabilityStore):
    """Process-local store. Transactions are serialised by a re-entrant lock."""

    def __init__(self):
        self._lock = RLock()
        self._availabilities: dict[int, Availability] = {}
        self._bookings: dict[int, Booking] = {}
        self._availability_ids = itertools.count(1)
        self._booking_ids = itertools.count(1)

    @contextmanager
    def transaction(self):
        with self._lock:
            yield self

    def get_availability(self, availability_id: int, for_update: bool = False) -> Availability | None:
        with self._lock:
            return self._availabilities.get(availability_id)

    def add_availability(self, availability: Availability) -> Availability:
        with self._lock:
            if availability.id is None:
                availability.id = next(self._availability_ids)
            self._availabilities[availability.id] = availability
            return availability

    def save_availability(self, availability: Availability) -> Availability:
        with self._lock:
            self._availabilities[availability.id] = availability
            return availability

    def delete_availability(self, availability: Availability) -> None:
        with self._lock:
            self._availabilities.pop(availability.id, None)

    def get_booking(self, booking_id: int) -> Booking | None:
        with self._lock:
            return self._bookings.get(booking_id)

    def add_booking(self, booking: Booking) -> Booking:
        with self._lock:
            if booking.id is None:
                booking.id = next(self._booking_ids)
            self._bookings[booking.id] = booking
            self.refresh_current_bookings(booking.availability_id)
            return booking

    def save_booking(self, booking: Booking) -> Booking:
        with self._lock:
            self._bookings[booking.id] = booking
            self.refresh_current_bookings(booking.availability_id)
            return booking

    def list_bookings(
        self,
        availability_id: int | None = None,
        booked_by: str | None = None,
        status: str | None = None,
    ) -> list[Booking]:
        with self._lock:
            bookings = [
                booking for booking in self._bookings.values()
                if (availability_id is None or booking.availability_id == availability_id)
                and (booked_by is None or booking.booked_by == booked_by)
                and (status is None or booking.status == status)
            ]
        return sorted(bookings, key=lambda booking: booking.start_time)

    def list_active_bookings(
        self,
        availability_id: int,
        time_range: tuple[datetime, datetime] | None = None,
        exclude_booking_id: int | None = None,
    ) -> list[Booking]:
        return [
            booking for booking in self.list_bookings(availability_id=availability_id)
            if booking.status != STATUS_CANCELLED
            and booking.id != exclude_booking_id
            and (time_range is None or overlap((booking.start_time, booking.end_time), time_range))
        ]

    def count_active_bookings(self, availability_id: int) -> int:
        return len(self.list_active_bookings(availability_id))
